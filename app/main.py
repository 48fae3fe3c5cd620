"""
Streamlit Dashboard for finsync

An example reader of the synced stores. Everything shown here comes
from store snapshots; every change goes through the FinanceSession.

DESIGN PRINCIPLES:
1. Reads never wait on the network
2. Edits show up immediately and roll back visibly if rejected
3. Clear error messages in simple language
4. Sync health is always visible

The session's event loop runs in a background thread so change
channels keep delivering between Streamlit reruns.
"""

import asyncio
import threading
from datetime import date, timedelta
from decimal import Decimal

import streamlit as st

from finsync.agents import FinancialAnalysis
from finsync.agents.ai_agents import SECTION_TITLES
from finsync.analytics import (
    category_breakdown,
    days_remaining,
    goal_progress,
    monthly_breakdown,
    summarize_totals,
)
from finsync.config import get_settings
from finsync.models import GoalDraft, StoreState, TransactionDraft, TransactionType
from finsync.orchestrator import FinanceSession, create_app_components
from finsync.services.remote import InMemoryDataService
from finsync.sync import MutationRejectedError, SyncError


# Page configuration
st.set_page_config(
    page_title="finsync",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="expanded",
)


@st.cache_resource
def get_loop() -> asyncio.AbstractEventLoop:
    """One event loop for the lifetime of the server process."""
    loop = asyncio.new_event_loop()
    threading.Thread(target=loop.run_forever, name="finsync-loop", daemon=True).start()
    return loop


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    return asyncio.run_coroutine_threadsafe(coro, get_loop()).result()


def seed_demo_data(service: InMemoryDataService, owner_id: str) -> None:
    """A few rows so the offline demo isn't empty."""
    today = date.today()
    service.seed("transactions", [
        {"user_id": owner_id, "type": "income", "category": "Salary",
         "amount": Decimal("3200.00"), "date": today.replace(day=1), "description": "Monthly salary"},
        {"user_id": owner_id, "type": "expense", "category": "Rent",
         "amount": Decimal("-1200.00"), "date": today.replace(day=2), "description": "Apartment"},
        {"user_id": owner_id, "type": "expense", "category": "Groceries",
         "amount": Decimal("-86.40"), "date": today, "description": "Weekly shop"},
    ])
    service.seed("goals", [
        {"user_id": owner_id, "title": "Emergency fund", "category": "Savings",
         "target": Decimal("5000.00"), "current": Decimal("1250.00"),
         "deadline": today + timedelta(days=180), "status": "in_progress"},
    ])


@st.cache_resource
def get_components() -> FinanceSession:
    """Get or create the signed-in session (cached)."""
    owner_id = get_settings().sync.demo_owner_id

    async def build() -> FinanceSession:
        session, service = create_app_components()
        if isinstance(service, InMemoryDataService):
            seed_demo_data(service, owner_id)
        await session.start(owner_id)
        return session

    return run_async(build())


def main():
    """Main application entry point."""
    try:
        session = get_components()
    except SyncError as e:
        st.error(f"Could not load your data: {e}")
        return

    # Sidebar navigation
    st.sidebar.title("💰 finsync")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["📊 Dashboard", "🧾 Transactions", "🎯 Goals", "🤖 Assistant"],
        index=0,
    )

    st.sidebar.markdown("---")
    render_sync_status(session)

    if page == "📊 Dashboard":
        render_dashboard_page(session)
    elif page == "🧾 Transactions":
        render_transactions_page(session)
    elif page == "🎯 Goals":
        render_goals_page(session)
    else:
        render_assistant_page(session)


def render_sync_status(session: FinanceSession):
    """Sidebar panel showing whether the stores are live."""
    for store in session.stores:
        icon = "🟢" if store.state == StoreState.LIVE else "🟡"
        pending = len(store.pending)
        suffix = f" · {pending} saving" if pending else ""
        st.sidebar.caption(f"{icon} {store.table}: {store.state.value}{suffix}")

    if session.is_stale:
        st.sidebar.warning("Live updates stopped. Your data may be out of date.")
        if st.sidebar.button("🔄 Reconnect"):
            try:
                run_async(session.resync())
                st.rerun()
            except SyncError as e:
                st.sidebar.error(f"Still can't reach the server: {e}")


def render_dashboard_page(session: FinanceSession):
    st.title("📊 Dashboard")

    transactions = session.transactions.snapshot()
    totals = summarize_totals(transactions)

    col1, col2, col3 = st.columns(3)
    col1.metric("Total Income", f"${totals.income:,.2f}")
    col2.metric("Total Expenses", f"${totals.expenses:,.2f}")
    col3.metric("Net Income", f"${totals.net:,.2f}")

    months = monthly_breakdown(transactions)
    if months:
        st.subheader("Monthly Trends")
        st.bar_chart(
            {
                "Month": [m.month for m in months],
                "Income": [float(m.income) for m in months],
                "Expenses": [float(m.expenses) for m in months],
            },
            x="Month",
        )

    categories = category_breakdown(transactions)
    if categories:
        st.subheader("Expenses by Category")
        for item in categories:
            st.write(f"**{item.category}**: ${item.amount:,.2f}")


def render_transactions_page(session: FinanceSession):
    st.title("🧾 Transactions")

    with st.form("add_transaction", clear_on_submit=True):
        st.subheader("Add Transaction")
        col1, col2 = st.columns(2)
        with col1:
            kind = st.selectbox("Type", [t.value for t in TransactionType], index=1)
            category = st.text_input("Category")
        with col2:
            amount = st.number_input("Amount", min_value=0.01, step=1.0, format="%.2f")
            when = st.date_input("Date", value=date.today())
        description = st.text_input("Description (optional)")

        if st.form_submit_button("💾 Save"):
            try:
                draft = TransactionDraft(
                    type=kind,
                    category=category,
                    amount=Decimal(str(round(amount, 2))),
                    date=when,
                    description=description or None,
                )
                run_async(session.add_transaction(draft))
                st.success("Transaction saved.")
            except MutationRejectedError as e:
                st.error(f"The server didn't accept that: {e}")
            except (SyncError, ValueError) as e:
                st.error(f"Please check the form: {e}")

    st.markdown("---")
    transactions = session.transactions.snapshot()
    if not transactions:
        st.info("No transactions yet.")
        return

    for t in transactions:
        col1, col2, col3 = st.columns([3, 1, 1])
        with col1:
            label = t.description or t.category
            st.write(f"**{label}** · {t.category} · {t.date.strftime('%d %b %Y')}")
        with col2:
            color = "green" if t.type == TransactionType.INCOME else "red"
            st.markdown(f":{color}[{t.amount:+,.2f}]")
        with col3:
            if st.button("🗑️", key=f"delete_{t.id}"):
                try:
                    run_async(session.delete_transaction(t.id))
                    st.rerun()
                except SyncError as e:
                    st.error(f"Couldn't delete: {e}")


def render_goals_page(session: FinanceSession):
    st.title("🎯 Goals")

    with st.form("add_goal", clear_on_submit=True):
        st.subheader("Add Goal")
        title = st.text_input("Title")
        category = st.text_input("Category")
        col1, col2 = st.columns(2)
        with col1:
            target = st.number_input("Target", min_value=0.01, step=100.0, format="%.2f")
        with col2:
            deadline = st.date_input("Deadline", value=date.today() + timedelta(days=90))
        description = st.text_area("Description (optional)")

        if st.form_submit_button("💾 Save"):
            try:
                draft = GoalDraft(
                    title=title,
                    category=category,
                    target=Decimal(str(round(target, 2))),
                    deadline=deadline,
                    description=description or None,
                )
                run_async(session.add_goal(draft))
                st.success("Goal saved.")
            except MutationRejectedError as e:
                st.error(f"The server didn't accept that: {e}")
            except (SyncError, ValueError) as e:
                st.error(f"Please check the form: {e}")

    st.markdown("---")
    goals = session.goals.snapshot()
    if not goals:
        st.info("No goals yet.")
        return

    for goal in goals:
        progress = goal_progress(goal)
        remaining = days_remaining(goal)
        st.subheader(f"{'✅' if progress >= 100 else '🎯'} {goal.title}")
        st.progress(progress / 100, text=f"${goal.current:,.2f} of ${goal.target:,.2f} ({progress}%)")
        st.caption(
            f"{goal.category} · "
            + (f"{remaining} days left" if remaining >= 0 else f"{-remaining} days overdue")
        )

        col1, col2 = st.columns([3, 1])
        with col1:
            saved = st.number_input(
                "Saved so far",
                min_value=0.0,
                value=float(goal.current),
                key=f"current_{goal.id}",
            )
            if st.button("Update progress", key=f"update_{goal.id}"):
                try:
                    run_async(session.update_goal_progress(goal.id, Decimal(str(round(saved, 2)))))
                    st.rerun()
                except SyncError as e:
                    st.error(f"Couldn't update: {e}")
        with col2:
            if st.button("🗑️ Delete", key=f"delete_goal_{goal.id}"):
                try:
                    run_async(session.delete_goal(goal.id))
                    st.rerun()
                except SyncError as e:
                    st.error(f"Couldn't delete: {e}")


def render_assistant_page(session: FinanceSession):
    st.title("🤖 Assistant")

    question = st.text_input(
        "Ask about your finances (leave empty for a full analysis)",
        placeholder="e.g., Where did most of my money go this month?",
    )

    if st.button("🔍 Analyze", type="primary"):
        with st.spinner("Thinking..."):
            result = run_async(session.analyze(question or None))

        if isinstance(result, FinancialAnalysis):
            for field, title in SECTION_TITLES:
                with st.expander(title, expanded=field == "immediate_insights"):
                    st.markdown(getattr(result, field))
        else:
            st.markdown(result)


if __name__ == "__main__":
    main()
