"""Deta Dash: AI-designed dashboards for uploaded CSV/JSON datasets."""
