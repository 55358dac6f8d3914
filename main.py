import os

import dotenv
import streamlit as st

from fluxpense.auth import EnvAuthProvider
from fluxpense.capture.camera import CameraSessionManager, OpenCVCameraDevice
from fluxpense.components.toast import StreamlitToastSink
from fluxpense.extraction.endpoints import build_extraction_endpoint
from fluxpense.llm import OpenAIClient
from fluxpense.logger import get_logger
from fluxpense.models import ExpenseCategory
from fluxpense.settings import load_settings
from fluxpense.workflow import EntryMethod, build_capture_session

dotenv.load_dotenv()
logger = get_logger(__name__)

required = ["FLUXPENSE_DB_URL", "FLUXPENSE_USER_ID"]
missing = [k for k in required if k not in os.environ]
if missing:
    raise RuntimeError(f"Missing env vars: {missing}")

st.set_page_config(page_title="FluxPense - Add Expense", layout="centered")


def initialize_session():
    """Creates one CaptureSession per browser session."""
    if "capture" in st.session_state:
        return

    settings = load_settings()
    llm_client = OpenAIClient(settings=settings.llm) if os.getenv("OPENAI_API_KEY") else None
    endpoint = build_extraction_endpoint(settings.extraction, llm_client=llm_client)

    st.session_state["capture"] = build_capture_session(
        settings,
        auth=EnvAuthProvider(),
        toasts=StreamlitToastSink(),
        endpoint=endpoint,
        camera=CameraSessionManager(OpenCVCameraDevice(settings.camera), settings=settings.camera),
        on_expense_added=lambda expense: st.session_state.setdefault("added", []).append(expense),
    )


def render_review(capture):
    """Editable form for the current review buffer."""
    buffer = capture.buffer
    if buffer is None:
        return

    if buffer.confidence is not None:
        st.caption(f"{round(buffer.confidence * 100)}% confident")

    categories = [None] + list(ExpenseCategory)
    with st.form("review"):
        amount = st.text_input("Amount *", value=buffer.amount, placeholder="0.00")
        description = st.text_input("Description *", value=buffer.description, placeholder="Coffee, Lunch, Gas, etc.")
        merchant = st.text_input("Merchant", value=buffer.merchant, placeholder="Store name")
        expense_date = st.date_input("Date", value=buffer.date)
        category = st.selectbox(
            "Category",
            categories,
            index=categories.index(buffer.category),
            format_func=lambda c: "No category" if c is None else c.value,
        )
        if buffer.items:
            st.write("Items: " + ", ".join(buffer.items))
        submitted = st.form_submit_button("Add Expense", type="primary")

    if submitted:
        outcome = capture.edit(amount=amount, description=description, merchant=merchant, date=expense_date, category=category)
        if outcome.ok:
            outcome = capture.commit()
        if outcome.ok:
            st.rerun()


initialize_session()
capture = st.session_state["capture"]

st.title("💸 FluxPense")

if not capture.is_open:
    if st.button("Add Expense", type="primary", width="stretch"):
        capture.open()
        st.rerun()
    for expense in st.session_state.get("added", [])[-5:]:
        st.write(f"{expense.date} · {expense.description} · ${expense.amount:.2f}")
    st.stop()

header, close_col = st.columns([4, 1])
header.subheader("How would you like to add this expense?" if capture.method == EntryMethod.SELECTION else capture.method.value.title())
if close_col.button("Close"):
    capture.close()
    st.rerun()

if capture.method == EntryMethod.SELECTION:
    cols = st.columns(4)
    for col, (method, label) in zip(cols, [
        (EntryMethod.MANUAL, "✏️ Manual Entry"),
        (EntryMethod.SCAN, "📷 Scan Receipt"),
        (EntryMethod.UPLOAD, "📤 Upload Receipt"),
        (EntryMethod.EMAIL, "✉️ Email Receipt"),
    ]):
        if col.button(label, width="stretch"):
            outcome = capture.choose(method)
            if outcome.fallback is not None:
                capture.choose(outcome.fallback)
            st.rerun()
    st.stop()

if st.button("← Back"):
    capture.back()
    st.rerun()

if capture.buffer is None:
    if capture.method == EntryMethod.SCAN:
        if capture.camera is not None and capture.camera.is_active:
            st.image(capture.camera.capture_frame(), channels="BGR")
            if st.button("Capture", type="primary"):
                with st.spinner("Processing..."):
                    capture.capture_photo()
                st.rerun()
        elif st.button("Retake"):
            capture.retake()
            st.rerun()

    elif capture.method == EntryMethod.UPLOAD:
        uploaded = st.file_uploader("Upload Receipt Image", type=["png", "jpg", "jpeg", "webp"])
        if uploaded is not None and st.button("Process Receipt", type="primary"):
            with st.spinner("Processing..."):
                capture.select_file(bytes(uploaded.getbuffer()), uploaded.name, uploaded.type, size=uploaded.size)
            st.rerun()

    elif capture.method == EntryMethod.EMAIL:
        sender = st.text_input("Sender Email (optional)", placeholder="receipt@store.com")
        subject = st.text_input("Email Subject", placeholder="Your receipt from Store Name")
        content = st.text_area("Email Content", placeholder="Paste the email content containing receipt information...")
        if st.button("Process Email", type="primary"):
            with st.spinner("Processing..."):
                capture.submit_email(content, subject=subject, sender=sender)
            st.rerun()

render_review(capture)
