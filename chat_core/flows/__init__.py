"""Model chain pipeline (LangGraph) and its named transforms."""
