"""
FastAPI HTTP layer for Comments Collator.
"""
