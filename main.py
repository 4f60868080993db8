import logging

import numpy as np
import pandas as pd
import plotly.graph_objects as go
import streamlit as st
from plotly.subplots import make_subplots

from libbinding.aggregate import aggregate
from libbinding.equations import evaluate
from libbinding.errors import BindingError
from libbinding.loaders import InMemoryTableLoader, RemoteURLLoader, read_table_bytes
from libbinding.models import FitConfig
from libbinding.report import generate_fit_report
from libbinding.simulation import make_example_table, simulate_experiment, titration_series
from libbinding.solver import BindingSolver
from libbinding.units import CONC_TO_MOLAR

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s: %(message)s")

# ───────────────────────────────────────────────────────
#  EXAMPLE DATA
# ───────────────────────────────────────────────────────
def make_example(model, r0):
    """Noisy three-replicate titration with two zero-concentration control rows."""
    rng = np.random
    kd = round(rng.uniform(5, 30), 1)
    smin, smax = round(rng.uniform(20, 60), 1), round(rng.uniform(180, 260), 1)
    params = [smin, smax, kd] + ([round(rng.uniform(1.2, 2.5), 2)] if model == "Hill" else [])
    conc = titration_series(kd * 50, 2.0, 12)
    return make_example_table(model, params, conc, n_replicates=3, cv=0.03, r0=r0)

PLOTLY_LAYOUT = dict(template="plotly_white", margin=dict(l=60, r=20, t=50, b=50))

def apply_plotly_theme(fig, height=500):
    fig.update_layout(**PLOTLY_LAYOUT, height=height)
    return fig

st.set_page_config(page_title="Binding Curve Fitting", layout="wide")
st.title("Equilibrium Binding: Non-linear Curve Fitting")

# ═══════════════════════════════════════════════════════
#  SIDEBAR
# ═══════════════════════════════════════════════════════
with st.sidebar:
    mode = st.radio("Mode", ["Analysis (Fit Data)", "Simulation"])
    st.markdown("---")
    chosen_model = st.radio("Binding model", ["Hill", "Hyperbolic", "Quadratic"], index=0)
    c_unit = st.selectbox("Concentration unit", list(CONC_TO_MOLAR), index=2)
    st.caption("For the quadratic model, R0 is the receptor concentration "
               "(in an FP experiment, the concentration of labelled probe).")
    r0 = st.slider(f"R0 ({c_unit})", 0.1, 20.0, 5.0, 0.1)
    trim_rows = st.number_input("Trailing rows to skip", 0, 20, 2, 1)
    weighting = st.selectbox("Weighting", ["Automatic", "1/std² (replicates)", "None"])

weighted = {"Automatic": None, "1/std² (replicates)": True, "None": False}[weighting]

# ═══════════════════════════════════════════════════════
#  SIMULATION
# ═══════════════════════════════════════════════════════
if mode == "Simulation":
    st.subheader("Simulate a titration before running it")
    col1, col2 = st.columns(2)
    with col1:
        kd = st.slider(f"Kd ({c_unit})", 0.1, 100.0, 10.0, 0.1)
        l_max = st.number_input(f"Highest ligand concentration L_max ({c_unit})", kd, 100000.0, 1000.0, 1.0)
    with col2:
        dilution = st.number_input("Dilution factor", 1.1, 10.0, 2.0, 0.1)
        points = st.number_input("Titration points", 1, 24, 15, 1)
        r_tot = st.slider(f"R_tot ({c_unit})", 0.001, 50.0, 1.0)

    table, ratios = simulate_experiment(kd, l_max, dilution, int(points), r_tot)
    st.markdown(f"L_max / Kd = **{ratios['lmax_over_kd']:.3g}**   ·   Kd / R_tot = **{ratios['kd_over_rtot']:.3g}**")
    fig = go.Figure()
    fig.add_trace(go.Scatter(x=table["concentration"], y=table["fractional_saturation"], mode="markers", name="Titration"))
    fig.add_vline(x=kd, line_color="red")
    fig.add_hline(y=0.0, line_color="black")
    fig.add_hline(y=1.0, line_color="black")
    fig.update_xaxes(type="log", title=f"Ligand concentration ({c_unit})")
    fig.update_yaxes(title="Predicted fractional saturation")
    st.plotly_chart(apply_plotly_theme(fig, 480), use_container_width=True)
    st.stop()

# ═══════════════════════════════════════════════════════
#  ANALYSIS
# ═══════════════════════════════════════════════════════
source = st.radio("Data source", ["Upload CSV", "URL", "Example"], horizontal=True)
raw, source_name = None, None
try:
    if source == "Upload CSV":
        uploaded = st.file_uploader("Column 1 = concentration, remaining columns = replicates", type=["csv", "tsv", "txt"])
        if uploaded:
            source_name = uploaded.name
            raw = read_table_bytes(uploaded.getvalue(), source=source_name)
    elif source == "URL":
        url = st.text_input("CSV URL")
        if url:
            loader = RemoteURLLoader(url)
            source_name = loader.name
            raw = loader.load()
    else:
        if st.button("New example") or "example" not in st.session_state:
            st.session_state.example = make_example(chosen_model, r0)
        source_name = "example"
        raw = InMemoryTableLoader(st.session_state.example, name=source_name).load()
except BindingError as exc:
    st.error(str(exc))

if raw is None:
    st.info("Choose a data source to start.")
    st.stop()

with st.expander("Raw table"):
    st.dataframe(raw, use_container_width=True)

try:
    config = FitConfig(model=chosen_model, r0=r0 if chosen_model == "Quadratic" else None,
                       trim_trailing_rows=int(trim_rows), concentration_unit=c_unit, weighted=weighted)
    data = aggregate(raw, config.trim_trailing_rows, source=source_name)
    solver = BindingSolver(data, config)
    result = solver.fit_model()
except BindingError as exc:
    st.error(f"{type(exc).__name__}: {exc}")
    st.stop()

errors = result.errors()
m1, m2, m3, m4 = st.columns(4)
m1.metric(f"Kd ({c_unit})", f"{result.parameters['kd']:.4g}", f"± {errors['kd']:.2g}", delta_color="off")
m2.metric("Degrees of freedom", result.dof)
m3.metric("SSR", f"{result.ssr:.4g}")
m4.metric("R²", f"{result.r_squared:.4f}")

st.dataframe(pd.DataFrame({
    "Parameter": [n.upper() for n in result.parameters.names],
    "Initial": result.initial.values,
    "Value": result.parameters.values,
    "Std. error": result.stderr,
}), hide_index=True, use_container_width=True)

c, mean, std = data.to_arrays()
c_smooth = np.geomspace(c.min(), c.max(), 200)
fig = make_subplots(rows=2, cols=1, shared_xaxes=True, row_heights=[0.7, 0.3],
                    subplot_titles=(f"{chosen_model} fit", "Residuals"))
fig.add_trace(go.Scatter(x=c, y=mean, mode="markers", name="Data",
                         error_y=dict(type="data", array=std, visible=data.weighted)), row=1, col=1)
fig.add_trace(go.Scatter(x=c_smooth, y=evaluate(chosen_model, c_smooth, result.initial.values, r0=config.r0),
                         mode="lines", name="Initial", line=dict(dash="dot")), row=1, col=1)
fig.add_trace(go.Scatter(x=c_smooth, y=result.predict(c_smooth), mode="lines", name="Converged"), row=1, col=1)
fig.add_trace(go.Scatter(x=c, y=result.residuals, mode="markers", name="Residual"), row=2, col=1)
fig.add_hline(y=0, line_dash="dash", line_color="red", row=2, col=1)
fig.update_xaxes(type="log", title_text=f"Concentration ({c_unit})", row=2, col=1)
fig.update_xaxes(type="log", row=1, col=1)
fig.update_yaxes(title_text="Signal", row=1, col=1)
st.plotly_chart(apply_plotly_theme(fig, 640), use_container_width=True)

with st.expander("Compare models"):
    ranked = solver.run_model_competition()
    st.dataframe(pd.DataFrame([{"Model": r.model, "AIC": r.aic, "Kd": r.parameters["kd"], "R²": r.r_squared}
                               for r in ranked]), hide_index=True, use_container_width=True)
    warning = solver.check_ambiguity(ranked)
    if warning:
        st.warning(warning)

report = generate_fit_report(result, data, config, source=source_name)
st.download_button("Download report", report, "binding_fit_report.txt")
