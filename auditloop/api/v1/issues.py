"""Issues endpoints: list and inspect recorded findings."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from auditloop.api.v1.deps import get_store
from auditloop.schemas.enums import FixStatus, SeverityLevel
from auditloop.schemas.issues import IssueRecord
from auditloop.services.store import StateStore

router = APIRouter()


@router.get("", response_model=list[IssueRecord])
def list_issues(
    store: Annotated[StateStore, Depends(get_store)],
    fix_status: FixStatus | None = None,
    severity: SeverityLevel | None = None,
    policy: str | None = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[IssueRecord]:
    """
    List issues ordered by id.

    Filter by fix_status, severity or originating policy; unknown enum
    values are rejected with 422.
    """
    return store.list_issues(
        fix_status=fix_status,
        severity=severity,
        policy=policy,
        limit=limit,
        offset=offset,
    )


@router.get("/{issue_id}", response_model=IssueRecord)
def get_issue(issue_id: int, store: Annotated[StateStore, Depends(get_store)]) -> IssueRecord:
    issue = store.get_issue(issue_id)
    if issue is None:
        raise HTTPException(status_code=404, detail=f"Issue {issue_id} not found")
    return issue
