"""
Streamlit Frontend for DaviPlata

The screen members of the organization use to record cash movements,
attach receipts, and (for admins) verify pending entries.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. The balance is always visible
3. Clear error messages in simple language
4. Only actions the signed-in user may take are offered

UI state lives in one UIState object kept in the session and passed
explicitly to every render function. Nothing reads session state
behind its back.
"""

import asyncio
from typing import Optional
from uuid import UUID

import streamlit as st
from pydantic import BaseModel

from daviplata.config import validate_all_settings
from daviplata.formatting import format_currency, format_display_name
from daviplata.ledger import LedgerError
from daviplata.models.movement import (
    DashboardSnapshot,
    Movement,
    MovementKind,
    UserProfile,
)
from daviplata.orchestrator import DashboardFlow, MovementFlow, create_app_components
from daviplata.reports import (
    movement_slip,
    report_filename,
    report_to_csv,
    slip_filename,
)


# Page configuration
st.set_page_config(
    page_title="DaviPlata",
    page_icon="💵",
    layout="wide",
    initial_sidebar_state="expanded",
)

# Custom CSS for better UX
st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .big-number {
        font-size: 2.5em;
        font-weight: bold;
        color: #2c3e50;
    }
    .pending-badge {
        color: #856404;
        font-weight: bold;
    }
</style>
""", unsafe_allow_html=True)

KIND_LABELS = {
    MovementKind.INCOME: "Income",
    MovementKind.EXPENSE: "Expense",
}


class UIState(BaseModel):
    """Everything the screen remembers between reruns."""

    actor: Optional[UserProfile] = None
    kind_filter: Optional[MovementKind] = None
    editing_id: Optional[UUID] = None
    flash: Optional[str] = None


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components():
    """Get or create application components (cached)."""
    try:
        return create_app_components(use_storage=True)
    except Exception as e:
        st.error(f"Failed to initialize: {e}")
        return create_app_components(use_storage=False)


def get_ui_state() -> UIState:
    if "ui_state" not in st.session_state:
        st.session_state.ui_state = UIState()
    return st.session_state.ui_state


def main():
    """Main application entry point."""
    movement_flow, dashboard_flow, _ = get_components()
    state = get_ui_state()

    st.sidebar.title("💵 DaviPlata")
    st.sidebar.markdown("---")

    if state.actor is None:
        render_sign_in(movement_flow, state)
        return

    st.sidebar.markdown(f"**{format_display_name(state.actor.display_name)}**")
    st.sidebar.caption("Administrator" if state.actor.is_privileged else "Member")
    if st.sidebar.button("Sign out"):
        st.session_state.ui_state = UIState()
        st.rerun()

    st.sidebar.markdown("---")
    page = st.sidebar.radio(
        "Navigate to:",
        ["📊 Movements", "➕ New Movement", "⚙️ Settings"],
        index=0,
    )

    if state.flash:
        st.success(state.flash)
        state.flash = None

    if page == "📊 Movements":
        render_movements_page(movement_flow, dashboard_flow, state)
    elif page == "➕ New Movement":
        render_new_movement_page(movement_flow, state)
    elif page == "⚙️ Settings":
        render_settings_page()


def render_sign_in(movement_flow: MovementFlow, state: UIState):
    """Profile lookup for a user the deployment has already authenticated."""
    st.title("Sign in")
    email = st.text_input("Email", placeholder="you@example.com")

    if st.button("Continue", type="primary") and email:
        try:
            state.actor = run_async(movement_flow.resolve_actor(email))
            st.rerun()
        except LedgerError as e:
            st.error(str(e))


def render_balance(snapshot: DashboardSnapshot):
    stats = snapshot.statistics
    st.markdown(
        f'<div class="big-number">{format_currency(stats.balance)}</div>',
        unsafe_allow_html=True,
    )
    col1, col2, col3 = st.columns(3)
    col1.metric("Income", format_currency(stats.income_total), f"{stats.income_count} movements")
    col2.metric("Expenses", format_currency(stats.expense_total), f"{stats.expense_count} movements")
    col3.metric("Total movements", stats.total_count)


def render_movements_page(
    movement_flow: MovementFlow,
    dashboard_flow: DashboardFlow,
    state: UIState,
):
    """Balance, filter and the list of recent movements."""
    st.title("📊 Movements")

    state.kind_filter = st.selectbox(
        "Show",
        options=[None, MovementKind.INCOME, MovementKind.EXPENSE],
        index=[None, MovementKind.INCOME, MovementKind.EXPENSE].index(state.kind_filter),
        format_func=lambda k: "All movements" if k is None else KIND_LABELS[k],
    )

    try:
        snapshot = run_async(dashboard_flow.load_dashboard(kind=state.kind_filter))
    except LedgerError as e:
        st.error(f"Could not load movements: {e}")
        return

    render_balance(snapshot)
    render_report_export(dashboard_flow, state)
    st.markdown("---")

    if not snapshot.movements:
        st.info("No movements yet. Use 'New Movement' to record the first one.")
        return

    for movement in snapshot.movements:
        render_movement_row(movement_flow, snapshot, movement, state)


def render_report_export(dashboard_flow: DashboardFlow, state: UIState):
    """CSV export of the current filter, optionally limited to a period."""
    with st.expander("📄 Export report"):
        col1, col2 = st.columns(2)
        since = col1.date_input("From", value=None, key="report-since")
        until = col2.date_input("To", value=None, key="report-until")

        try:
            report = run_async(dashboard_flow.build_report(
                kind=state.kind_filter,
                since=since,
                until=until,
            ))
        except LedgerError as e:
            st.error(str(e))
            return

        if report.is_empty:
            st.caption("No movements to export for this period.")
            return

        st.caption(
            f"{report.statistics.total_count} movements, "
            f"balance {format_currency(report.statistics.balance)}"
        )
        st.download_button(
            "Download CSV",
            data=report_to_csv(report),
            file_name=report_filename(report),
            mime="text/csv",
            key="report-download",
        )


def render_movement_row(
    movement_flow: MovementFlow,
    snapshot: DashboardSnapshot,
    movement: Movement,
    state: UIState,
):
    sign = "+" if movement.kind == MovementKind.INCOME else "-"
    title = (
        f"{sign}{format_currency(movement.amount)} · {movement.reason} · "
        f"{format_display_name(movement.owner_name or movement.owner_email)}"
    )

    with st.expander(title):
        st.markdown(f"**Date:** {movement.occurred_at.strftime('%d %B %Y %H:%M')}")
        if movement.is_verified:
            st.markdown("✅ Verified")
        else:
            st.markdown('<span class="pending-badge">⏳ Pending</span>', unsafe_allow_html=True)
        if movement.receipt_url:
            st.markdown(f"[View receipt]({movement.receipt_url})")

        editability = snapshot.editability_for(movement.id)
        is_owner = movement.owner_id == state.actor.id

        if editability and editability.editable and is_owner:
            st.caption(f"✏️ {editability.reason}")
            if state.editing_id == movement.id:
                render_edit_form(movement_flow, movement, state)
            elif st.button("Edit", key=f"edit-{movement.id}"):
                state.editing_id = movement.id
                st.rerun()

        if state.actor.is_privileged and not movement.is_verified:
            if st.button("Verify", key=f"verify-{movement.id}", type="primary"):
                try:
                    outcome = run_async(
                        movement_flow.verify_movement(state.actor, movement.id)
                    )
                    state.flash = outcome.message
                    st.rerun()
                except LedgerError as e:
                    st.error(str(e))

        st.download_button(
            "Download slip",
            data=movement_slip(movement),
            file_name=slip_filename(movement),
            mime="text/plain",
            key=f"slip-{movement.id}",
        )

        if st.checkbox("Show history", key=f"history-{movement.id}"):
            render_history(movement_flow, movement.id)


def render_edit_form(movement_flow: MovementFlow, movement: Movement, state: UIState):
    with st.form(key=f"edit-form-{movement.id}"):
        amount = st.number_input(
            "Amount",
            value=float(movement.amount),
            min_value=0.0,
            step=0.01,
            format="%.2f",
        )
        reason = st.text_area("Reason", value=movement.reason)
        receipt = st.file_uploader(
            "Replace receipt (optional)",
            type=["jpg", "jpeg", "png", "webp", "pdf"],
        )
        submitted = st.form_submit_button("Save changes", type="primary")

    if st.button("Cancel", key=f"cancel-{movement.id}"):
        state.editing_id = None
        st.rerun()

    if submitted:
        try:
            outcome = run_async(
                movement_flow.edit_movement(
                    actor=state.actor,
                    movement_id=movement.id,
                    amount=str(amount),
                    reason=reason,
                    receipt=receipt.getvalue() if receipt else None,
                    receipt_filename=receipt.name if receipt else None,
                    receipt_mime_type=receipt.type if receipt else None,
                )
            )
            state.editing_id = None
            state.flash = outcome.message
            st.rerun()
        except LedgerError as e:
            st.error(str(e))


def render_history(movement_flow: MovementFlow, movement_id: UUID):
    try:
        events = run_async(movement_flow.get_history(movement_id))
    except LedgerError as e:
        st.error(str(e))
        return
    if not events:
        st.caption("No history recorded.")
        return
    for event in events:
        st.caption(f"{event.timestamp.strftime('%d/%m/%Y %H:%M')} · {event.description}")


def render_new_movement_page(movement_flow: MovementFlow, state: UIState):
    """Form to record a movement. Only admins are offered expenses."""
    st.title("➕ New Movement")

    kinds = [MovementKind.INCOME]
    if state.actor.is_privileged:
        kinds.append(MovementKind.EXPENSE)

    with st.form(key="new-movement", clear_on_submit=True):
        kind = st.radio(
            "Type",
            options=kinds,
            format_func=lambda k: KIND_LABELS[k],
            horizontal=True,
        )
        amount = st.number_input("Amount *", min_value=0.0, step=0.01, format="%.2f")
        reason = st.text_area("Reason *", placeholder="What was this for?")
        receipt = st.file_uploader(
            "Receipt (optional)",
            type=["jpg", "jpeg", "png", "webp", "pdf"],
            help="Take a clear photo of the receipt",
        )
        submitted = st.form_submit_button("Save", type="primary")

    if not submitted:
        return

    with st.spinner("Saving..."):
        try:
            outcome = run_async(
                movement_flow.create_movement(
                    actor=state.actor,
                    kind=kind,
                    amount=str(amount),
                    reason=reason,
                    receipt=receipt.getvalue() if receipt else None,
                    receipt_filename=receipt.name if receipt else None,
                    receipt_mime_type=receipt.type if receipt else None,
                )
            )
        except LedgerError as e:
            st.error(str(e))
            return

    movement = outcome.movement
    st.success(
        f"{outcome.message}: {KIND_LABELS[movement.kind]} "
        f"{format_currency(movement.amount)}"
    )
    if not movement.is_verified:
        st.info("An administrator will verify this movement.")


def render_settings_page():
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Connection Status")

    status = validate_all_settings()

    services = [
        ("Google Sheets (Storage)", "google_sheets"),
        ("Cloudinary (Receipts)", "cloudinary"),
        ("Webhooks (Notifications)", "webhooks"),
    ]

    for name, key in services:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "To configure the application, create a `.env` file with your credentials. "
        "See `.env.example` for the required variables."
    )


if __name__ == "__main__":
    main()
