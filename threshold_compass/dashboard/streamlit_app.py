"""
Streamlit dashboard for Threshold Compass.
Main page: quick inputs (dose, post-dose feel, check-in).
Sidebar: compass (carryover, range, drift), batches, system.
Mobile-first.
"""

import os
from datetime import datetime

import httpx
import pandas as pd
import plotly.graph_objects as go
import streamlit as st

# --- Config ---
API_BASE = os.getenv("COMPASS_API_URL", "http://localhost:8000")
API_KEY = os.getenv("COMPASS_API_KEY", "")
USER_ID = os.getenv("COMPASS_DEFAULT_USER", "local")
HEADERS = {"x-user-id": USER_ID}
if API_KEY:
    HEADERS["x-api-key"] = API_KEY


def _request(method: str, path: str, **kwargs) -> dict | list:
    try:
        r = httpx.request(method, f"{API_BASE}{path}", headers=HEADERS, timeout=10, **kwargs)
        r.raise_for_status()
        return r.json()
    except Exception as e:
        st.error(f"Compass API unreachable: {e}")
        return {}


def api_get(path: str, params: dict | None = None) -> dict | list:
    return _request("GET", path, params=params)


def api_post(path: str, data: dict) -> dict:
    return _request("POST", path, json=data)


def api_patch(path: str, data: dict) -> dict:
    return _request("PATCH", path, json=data)


# --- Charts ---
CHART_CONFIG = {
    "displayModeBar": False,
    "scrollZoom": False,
    "staticPlot": False,
    "responsive": True,
}

CHART_LAYOUT = dict(
    dragmode=False,
    template="plotly_dark",
    margin=dict(l=36, r=16, t=44, b=30),
    legend=dict(orientation="h", yanchor="bottom", y=1.02),
    xaxis=dict(fixedrange=True),
    yaxis=dict(fixedrange=True),
)

TIER_COLORS = {
    "clear": "#4CAF50",
    "mild": "#FFC107",
    "moderate": "#FF9800",
    "elevated": "#F44336",
}

FEEL_LABELS = {
    "nothing": "Nothing",
    "under": "Under",
    "sweetspot": "Sweet spot",
    "over": "Over",
}

GOALS = ["stability", "clarity", "creativity", "presence", "recovery", "exploration"]


def mobile_chart(fig, height=350, **kwargs):
    """Plotly chart locked against touch zoom and pan."""
    fig.update_layout(**CHART_LAYOUT, height=height, **kwargs)
    st.plotly_chart(fig, use_container_width=True, config=CHART_CONFIG)


def batch_picker(key: str) -> dict | None:
    """Select box over active batches; None when there are none."""
    batches = api_get("/api/batches", {"active_only": True})
    if not isinstance(batches, list) or not batches:
        st.info("No batches yet. Create one under Batches.")
        return None
    labels = {f"{b['name']} ({b['substance_type']})": b for b in batches}
    choice = st.selectbox("Batch", list(labels), key=key)
    return labels[choice]


# --- Page Config ---
st.set_page_config(
    page_title="Threshold Compass",
    page_icon=None,
    layout="wide",
    initial_sidebar_state="collapsed",
)

st.markdown("""
<style>
    .block-container {
        padding-top: 0.3rem;
        padding-left: 0.5rem;
        padding-right: 0.5rem;
        max-width: 100%;
    }
    div[data-testid="stMetric"] {
        background-color: #1b1f2a;
        border: 1px solid #2e3440;
        border-radius: 10px;
        padding: 6px 12px;
    }
    .stButton > button {
        min-height: 52px;
        font-size: 1rem;
        border-radius: 10px;
    }
</style>
""", unsafe_allow_html=True)

# Dose limits and labels come from the API
DOSE_RANGES = api_get("/api/dose-ranges") or {}
SUBSTANCE_LABELS = {s: r["label"] for s, r in DOSE_RANGES.items()}
SUBSTANCE_LABELS["other"] = "Other"

# =========================================================
# SIDEBAR: Navigation + quick status
# =========================================================
PAGES = ["Log", "Compass", "Batches", "System"]

with st.sidebar:
    st.header("Threshold Compass")
    current_page = st.radio("Navigation", PAGES, index=0, label_visibility="collapsed")
    st.divider()
    substance = st.selectbox("Substance", list(DOSE_RANGES) or ["psilocybin"], key="sidebar_substance",
                             format_func=lambda s: SUBSTANCE_LABELS.get(s, s))
    co_sidebar = api_get("/api/carryover", {"substance": substance})
    if isinstance(co_sidebar, dict) and "percentage" in co_sidebar:
        st.metric("Carryover", f"{co_sidebar['percentage']}%", delta=co_sidebar["tier"],
                  delta_color="off")
        st.caption(co_sidebar["message"])


# =========================================================
# PAGE: Log (default)
# =========================================================
if current_page == "Log":
    batch = batch_picker("log_batch")

    if batch:
        # ---- SECTION 1: Dose ----
        st.subheader("1 - Dose")
        unit = batch["dose_unit"]
        limits = DOSE_RANGES.get(batch["substance_type"], {})
        default = float(limits.get("default_dose", 0.1))
        step = float(limits.get("step", 0.01))
        if limits:
            st.caption(f"Typical microdose: {limits['typical']}")
        dc1, dc2 = st.columns(2)
        with dc1:
            amount = st.number_input(f"Amount ({unit})", min_value=0.0, value=default,
                                     step=step, format="%.3f", key="amount")
        with dc2:
            backdate = st.checkbox("Earlier time", key="backdate")
        dosed_at = None
        if backdate:
            tc1, tc2 = st.columns(2)
            with tc1:
                ddate = st.date_input("Date", value=datetime.now().date(), key="ddate")
            with tc2:
                dtime = st.time_input("Time", value=datetime.now().time().replace(second=0, microsecond=0),
                                      key="dtime")
            dosed_at = datetime.combine(ddate, dtime).isoformat()

        if st.button("Log dose", type="primary", use_container_width=True):
            r = api_post("/api/doses", {"batch_id": batch["id"], "amount": amount, "dosed_at": dosed_at})
            if r.get("status") == "ok":
                warning = r.get("warning")
                if warning:
                    st.warning(f"{warning['title']}: {warning['message']}")
                co = r["carryover"]
                st.success(
                    f"Logged {r['display']}. Carryover {co['percentage']}% ({co['tier']}), "
                    f"effective dose {r['effective_dose']}{unit}"
                )

        # ---- SECTION 2: How did it feel? ----
        st.divider()
        st.subheader("2 - How did it feel?")
        doses = api_get("/api/doses", {"batch_id": batch["id"], "days": 14})
        pending = [d for d in doses if not d.get("post_dose_completed")] if isinstance(doses, list) else []
        if not pending:
            st.caption("No open post-dose reports.")
        for dose in reversed(pending[-3:]):
            ts = datetime.fromisoformat(dose["dosed_at"]).strftime("%d.%m. %H:%M")
            st.write(f"{ts}: {dose['amount']}{unit}")
            cols = st.columns(len(FEEL_LABELS))
            for col, (feel, label) in zip(cols, FEEL_LABELS.items()):
                with col:
                    if st.button(label, key=f"feel_{dose['id']}_{feel}", use_container_width=True):
                        r = api_patch(f"/api/doses/{dose['id']}/feel", {"threshold_feel": feel})
                        if r.get("status") == "ok":
                            st.rerun()

    # ---- SECTION 3: Check-in ----
    st.divider()
    st.subheader("3 - Check-in")
    cc1, cc2, cc3 = st.columns(3)
    with cc1:
        energy = st.slider("Energy", 1, 5, 3, key="ci_energy")
    with cc2:
        clarity = st.slider("Clarity", 1, 5, 3, key="ci_clarity")
    with cc3:
        stability = st.slider("Stability", 1, 5, 3, key="ci_stability")
    ci_notes = st.text_input("Notes (optional)", key="ci_notes")
    if st.button("Save check-in", type="primary", use_container_width=True):
        r = api_post("/api/check-ins", {
            "energy": energy, "clarity": clarity, "stability": stability, "notes": ci_notes,
        })
        if r.get("status") == "ok":
            st.success("Saved")


# =========================================================
# PAGE: Compass
# =========================================================
elif current_page == "Compass":
    st.header("Compass")

    # -- Carryover decay --
    days = st.slider("Days", 3, 30, 14, key="curve_days")
    curve = api_get("/api/carryover/curve", {"substance": substance, "days": days})
    if isinstance(curve, dict) and curve.get("points"):
        df = pd.DataFrame(curve["points"])
        df["time"] = pd.to_datetime(df["timestamp"])
        fig = go.Figure()
        fig.add_trace(go.Scatter(
            x=df["time"], y=df["percentage"],
            mode="lines", name="Carryover",
            line=dict(color="#FF9800", width=3),
            fill="tozeroy", fillcolor="rgba(255,152,0,0.08)",
        ))
        for upper, color in [(15, TIER_COLORS["clear"]), (30, TIER_COLORS["mild"]), (50, TIER_COLORS["moderate"])]:
            fig.add_hline(y=upper, line=dict(color=color, width=1, dash="dot"))
        mobile_chart(fig, height=300, title="Carryover (%)", yaxis=dict(range=[0, 100], fixedrange=True))

    if isinstance(co_sidebar, dict) and co_sidebar.get("clear_at"):
        clear_at = datetime.fromisoformat(co_sidebar["clear_at"])
        st.caption(f"Back to clear around {clear_at.strftime('%d.%m. %H:%M')} "
                   f"({co_sidebar['hours_to_clear']} h)")

    # -- Threshold range + drift --
    st.divider()
    batch = batch_picker("compass_batch")
    if batch:
        rng = api_get(f"/api/threshold-range/{batch['id']}")
        if isinstance(rng, dict) and rng.get("found"):
            unit = batch["dose_unit"]
            r1, r2, r3 = st.columns(3)
            r1.metric("Floor", f"{rng['floor']}{unit}" if rng["floor"] is not None else "-")
            r2.metric("Sweet spot", f"{rng['sweet_spot']}{unit}" if rng["sweet_spot"] is not None else "-")
            r3.metric("Ceiling", f"{rng['ceiling']}{unit}" if rng["ceiling"] is not None else "-")
            st.progress(rng["confidence"] / 100, text=f"{rng['confidence']}% - {rng['qualifier']}")

            intention = st.radio("Intention", ["subtle", "standard", "strong"], index=1,
                                 horizontal=True, key="intention")
            sug = api_get("/api/dose-suggestion", {"batch_id": batch["id"], "intention": intention})
            if isinstance(sug, dict) and sug.get("found"):
                if sug["rest"]:
                    st.warning(sug["rationale"])
                else:
                    st.success(f"**{sug['dose']}{sug['unit']}**: {sug['rationale']}")

            drift = api_get("/api/drift", {"batch_id": batch["id"]})
            if isinstance(drift, dict) and drift.get("is_drifting"):
                if drift["severity"] == "warning":
                    st.warning(drift["message"])
                else:
                    st.info(drift["message"])
        else:
            st.caption("No threshold range yet.")

        if st.button("Recalculate range", use_container_width=True):
            r = api_post("/api/threshold-range", {"batch_id": batch["id"]})
            if "confidence" in r:
                st.rerun()

    # -- Patterns --
    st.divider()
    st.subheader("Patterns")
    found = api_get("/api/patterns", {"substance": substance})
    if isinstance(found, dict) and found.get("patterns"):
        for p in found["patterns"]:
            st.info(f"**{p['title']}** ({p['confidence']}%)  \n{p['description']}")
    elif isinstance(found, dict):
        st.caption(f"No patterns yet ({found.get('doses', 0)} doses in the last {found.get('days', 90)} days).")

    # -- Course correction --
    st.divider()
    st.subheader("Course correction")
    gc1, gc2 = st.columns(2)
    with gc1:
        goal = st.selectbox("North star", GOALS, key="goal")
    with gc2:
        zone = st.selectbox("Today felt", ["", "sub", "low", "sweet_spot", "high", "over"], key="zone")
    if st.button("Suggest", use_container_width=True):
        params = {"goal": goal, "substance": substance}
        if zone:
            params["zone"] = zone
        r = api_get("/api/corrections/suggest", params)
        if isinstance(r, dict) and r.get("found"):
            c = r["correction"]
            st.success(f"**{c['title']}** ({c['duration_sec']} s)")
            st.write(c["instruction"])
        elif isinstance(r, dict):
            st.caption("Nothing to suggest right now.")


# =========================================================
# PAGE: Batches
# =========================================================
elif current_page == "Batches":
    st.header("Batches")
    with st.form("new_batch"):
        name = st.text_input("Name")
        sub = st.selectbox("Substance", list(SUBSTANCE_LABELS), format_func=SUBSTANCE_LABELS.get)
        notes = st.text_input("Notes (optional)")
        if st.form_submit_button("Create batch", type="primary") and name:
            r = api_post("/api/batches", {"name": name, "substance_type": sub, "notes": notes})
            if r.get("status") == "ok":
                st.success(f"Batch {name} created")

    batches = api_get("/api/batches")
    if isinstance(batches, list) and batches:
        st.dataframe(
            pd.DataFrame(batches)[["id", "name", "substance_type", "dose_unit", "calibration_status"]],
            use_container_width=True, hide_index=True,
        )
        calibrated = [b for b in batches if b["calibration_status"] == "calibrated"]
        if len(calibrated) >= 2:
            st.subheader("Compare")
            names = {b["name"]: b["id"] for b in calibrated}
            ca, cb = st.columns(2)
            with ca:
                a = st.selectbox("Batch A", list(names), index=0, key="cmp_a")
            with cb:
                b = st.selectbox("Batch B", list(names), index=1, key="cmp_b")
            if a != b:
                cmp = api_get("/api/threshold-range/compare", {"batch_a": names[a], "batch_b": names[b]})
                if isinstance(cmp, dict) and cmp.get("message"):
                    st.info(cmp["message"])


# =========================================================
# PAGE: System
# =========================================================
elif current_page == "System":
    st.header("System")
    status = api_get("/api/status")
    if status:
        st.json(status)
    st.caption(f"API: {API_BASE} - user: {USER_ID}")
