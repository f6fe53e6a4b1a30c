"""
app/streamlit_app.py

Read-only Streamlit dashboard for the GB grid carbon intensity.

Responsibilities
----------------
- Show the last cached 24h summary: status, current and retail intensity,
  and the hour-of-day histograms.
- Rebuild intensities from the 7-day long-term store and show the
  per-axis bucket tables and per-fuel correlations.

Environment Variables
---------------------
FUELINST_OUTPUT_BASE
    Base path of the cache and long-term store written by `fuelinst.run`.
FUELINST_INTENSITIES
    Per-fuel intensities, as used by the pipeline.

Notes
-----
- The app never writes: it only reads files produced by the pipeline.
"""

import os
from datetime import datetime, timezone

import pandas as pd
import streamlit as st
from dotenv import load_dotenv

from fuelinst.buckets import bucket_intensities, bucket_table
from fuelinst.config import load_settings
from fuelinst.errors import ConfigError
from fuelinst.intensity import fuel_mw_by_category
from fuelinst.stats import fuel_correlations
from fuelinst.store import cache_path, load_cache, long_store_path, try_load_long_store
from fuelinst.summary import accepted_samples, intensity_values, publication_status

# Load .env locally so shells don't need to export env vars.
load_dotenv()

st.set_page_config(page_title="GB Grid Carbon Intensity", layout="wide")

st.title("GB Grid Carbon Intensity")
st.caption("Generation-weighted carbon intensity of the GB grid from Elexon FUELINST data.")

try:
    settings = load_settings()
except ConfigError as e:
    st.warning(f"Configuration is incomplete: {e}")
    st.stop()

base = settings.output_base or os.environ.get("FUELINST_OUTPUT_BASE")
if not base:
    st.warning("FUELINST_OUTPUT_BASE is not set; nothing to show.")
    st.stop()

now = datetime.now(timezone.utc)
now_ms = int(now.timestamp() * 1000)

# ---------------------------
# Current status (24h cache)
# ---------------------------
summary = load_cache(cache_path(base))
if summary is None:
    st.info("No cached summary yet. Run the pipeline first.")
else:
    published = publication_status(summary, now_ms)
    kpis = st.columns(4)
    with kpis[0]:
        st.metric("Status", published.status.value if published.status else "unknown")
        if published.stale:
            st.caption("Live data is stale; status is predicted from history.")
    with kpis[1]:
        st.metric("Current intensity (gCO2/kWh)", summary.current_intensity)
    with kpis[2]:
        st.metric("Retail intensity (gCO2/kWh)", published.retail_intensity)
    with kpis[3]:
        st.metric("Samples (24h)", summary.hist_samples)

    by_category = fuel_mw_by_category(summary.current_gen_by_fuel, settings.categories)
    if by_category:
        st.caption(", ".join(f"{name}: {mw} MW" for name, mw in sorted(by_category.items())))

    hourly = pd.DataFrame(
        {
            "Intensity (gCO2/kWh)": summary.ave_intensity_by_hour.slots,
            "Generation (MW)": summary.ave_generation_by_hour.slots,
            "Zero-carbon (MW)": summary.ave_zero_carbon_by_hour.slots,
            "Storage drawdown (MW)": summary.ave_storage_drawdown_by_hour.slots,
        },
        index=pd.RangeIndex(24, name="Hour (UTC)"),
    )
    st.subheader("Mean intensity by hour of day")
    st.bar_chart(hourly["Intensity (gCO2/kWh)"])
    st.subheader("Mean generation by hour of day")
    st.line_chart(hourly.drop(columns=["Intensity (gCO2/kWh)"]))

# ---------------------------
# 7-day history (long store)
# ---------------------------
store = try_load_long_store(long_store_path(base))
if not store:
    st.info("The long-term store is empty.")
    st.stop()

intensities = settings.intensities(now.year)
samples = accepted_samples(store, settings.row_template)
values = intensity_values(samples, intensities)

series = pd.DataFrame(
    {"Intensity (gCO2/kWh)": [v.value for v in values]},
    index=pd.to_datetime([v.timestamp_ms for v in values], unit="ms", utc=True),
)
st.subheader("Intensity over the last 7 days")
st.line_chart(series)

for alg, snapshot in bucket_intensities(values).items():
    st.subheader("All data" if alg.title == "ALL" else f"By {alg.title}")
    st.dataframe(bucket_table(snapshot))

by_demand, by_intensity, demand_vs_intensity = fuel_correlations(samples, intensities)
st.subheader("Fuel correlations")
if demand_vs_intensity is not None:
    st.caption(f"Correlation of demand with grid intensity: {demand_vs_intensity:.4f}")
corr = pd.DataFrame({"vs demand": pd.Series(by_demand), "vs intensity": pd.Series(by_intensity)})
corr.index = [settings.fuel_names.get(fuel, fuel) for fuel in corr.index]
corr.index.name = "Fuel"
st.dataframe(corr.sort_index().style.format("{:.3f}"))
