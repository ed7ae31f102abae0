"""Scoring, caching and refresh orchestration.

Routes and scripts call into these modules; database access goes through
stores.postgres sessions passed in or opened here.
"""
