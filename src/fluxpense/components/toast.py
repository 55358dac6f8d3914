"""Fire-and-forget toast sinks used to acknowledge workflow outcomes."""

from typing import List, Optional, Tuple

import streamlit as st

from fluxpense.logger import get_logger

logger = get_logger(__name__)


class LoggingToastSink:
    """Writes toasts to the log and keeps them in memory (CLI runs and tests)."""

    def __init__(self):
        self.messages: List[Tuple[str, str, str]] = []

    def show(self, title: str, description: str = "", variant: str = "default"):
        self.messages.append((title, description, variant))
        if variant == "destructive":
            logger.warning("Toast: %s - %s", title, description)
        else:
            logger.info("Toast: %s - %s", title, description)


class StreamlitToastSink:
    """Shows toasts in the running Streamlit page."""

    ICONS = {"default": "✅", "info": "ℹ️", "destructive": "⚠️"}

    def show(self, title: str, description: str = "", variant: str = "default"):
        body: Optional[str] = f"**{title}**\n\n{description}" if description else f"**{title}**"
        try:
            st.toast(body, icon=self.ICONS.get(variant, self.ICONS["default"]))
        except Exception as e:
            # Toasts never fail the workflow; the outcome is still returned to the page.
            logger.warning("Could not display toast '%s': %s", title, e)
