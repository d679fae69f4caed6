"""LangGraph orchestration loop: state, message utilities, routing and nodes."""
