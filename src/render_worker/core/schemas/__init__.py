"""Pydantic schemas for queue payload validation.

Sub-modules:
    job — Job record and ``parse_job`` for wait-queue payloads
"""

from __future__ import annotations
