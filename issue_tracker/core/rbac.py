from __future__ import annotations

from fastapi import HTTPException

from issue_tracker.auth.user import User, Role


def require(condition: bool, msg: str = "Access denied", status_code: int = 403) -> None:
    """Small helper used across routers.

    Defaults to 403 (permission denied). For validation errors or not-found cases,
    pass `status_code=400/404`.
    """
    if not condition:
        raise HTTPException(status_code=status_code, detail=msg)


def can_submit_standard(user: User) -> bool:
    return user.role == Role.PRODUCT_SUPPORT


def can_submit_loan_issue(user: User) -> bool:
    return user.role == Role.SALES_MANAGER


def can_view_submissions(user: User) -> bool:
    return user.role in (Role.PRODUCT_SUPPORT, Role.TECH_SUPPORT_TEAM)


def home_path(user: User) -> str:
    """Landing page after login."""
    if user.role == Role.SALES_MANAGER:
        return "/loan-issue"
    if user.role == Role.PRODUCT_SUPPORT:
        return "/submit"
    return "/submissions"
