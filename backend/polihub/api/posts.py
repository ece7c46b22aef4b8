import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from polihub.core.api_response import success_response_payload
from polihub.core.errors import RateLimited, Unauthorized
from polihub.core.identity import normalize_county
from polihub.core.observability import log_business_event
from polihub.core.paging import paged_payload
from polihub.core.permissions import has_permission
from polihub.core.rate_limit import post_limiter, throttled_post_limiter
from polihub.core.security import Principal, get_current_principal, get_current_user
from polihub.db.models.post import Post
from polihub.db.models.user import User
from polihub.db.session import get_db
from polihub.schemas.content import FlagCreate, PostCreate
from polihub.services import moderation, trust

router = APIRouter(prefix="/api/posts", tags=["posts"])
logger = logging.getLogger(__name__)


def _enforce_posting_rate(db: Session, user: User) -> None:
    moderation.ensure_can_post(user)
    standing = trust.get_posting_eligibility(user)
    limiter = throttled_post_limiter if standing == trust.Standing.THROTTLED else post_limiter
    try:
        limiter.hit(f"user:{user.id}")
    except RateLimited:
        trust.record_rate_limit_violation(db, user.id)
        db.commit()
        raise


@router.get("")
def list_posts(
    request: Request,
    page: int = 1,
    page_size: int = 20,
    county: str | None = None,
    parent_id: int | None = None,
    db: Session = Depends(get_db),
):
    query = db.query(Post).filter(Post.status == moderation.POST_PUBLISHED)
    if parent_id is None:
        query = query.filter(Post.kind == "post")
    else:
        query = query.filter(Post.parent_id == parent_id)
    if county:
        query = query.filter(Post.county == normalize_county(county))
    query = query.order_by(Post.id.desc())
    return success_response_payload(
        request,
        data=paged_payload(query, page=page, page_size=page_size, serializer=moderation.serialize_post),
    )


@router.post("")
def create_post(
    payload: PostCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _enforce_posting_rate(db, user)
    result = moderation.submit_content(
        db,
        user,
        body=payload.body,
        kind=payload.kind,
        title=payload.title,
        county=normalize_county(payload.county),
        parent_id=payload.parent_id,
    )
    log_business_event(
        logger,
        request,
        event="post.submit",
        post_id=result.post.id,
        decision=result.decision.value,
    )
    return success_response_payload(request, data={
        "post": moderation.serialize_post(result.post),
        "decision": result.decision.value,
        "flag": moderation.serialize_flag(result.flag) if result.flag else None,
        "trust_score": result.trust_score,
    })


@router.post("/{post_id}/flag")
def flag_post(
    post_id: int,
    request: Request,
    payload: FlagCreate | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    user: User = Depends(get_current_user),
):
    if not has_permission(principal.permissions, "flag_content"):
        raise Unauthorized("flag_content")
    post = db.get(Post, post_id)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    payload = payload or FlagCreate()
    flag = moderation.flag_content(db, post, user, reason=payload.reason)
    log_business_event(logger, request, event="post.flag", post_id=post.id, flag_id=flag.id)
    return success_response_payload(request, data={
        "flag": moderation.serialize_flag(flag),
        "post_status": post.status,
    })
