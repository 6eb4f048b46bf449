from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..auth import Caller, ensure_self_or_admin, require_key
from ..db import get_db
from ..errors import TemplateNotFound
from ..services.signatures import count_for_owner, get_signature
from ..services.templates import TemplateResolver
from ..services.validation import clean_name
from .errors import http_error

router = APIRouter(tags=["Signatures"])


def get_resolver() -> TemplateResolver:
    return TemplateResolver()


@router.get("/signatures/count")
def signature_count(
    owner_id: int = Query(..., ge=1),
    caller: Caller = Depends(require_key),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(caller, owner_id)
    return {"count": count_for_owner(db, owner_id), "owner_id": owner_id}


@router.get("/signatures/{signature_id}/download")
def download_signature(
    signature_id: int,
    caller: Caller = Depends(require_key),
    db: Session = Depends(get_db),
    resolver: TemplateResolver = Depends(get_resolver),
):
    """Rendered signature as an HTML attachment; only the owner can fetch it"""
    sig = get_signature(db, signature_id)
    # Same answer for missing and foreign records
    if sig is None or sig.user_id != caller.user_id:
        raise HTTPException(status_code=404, detail="Signature not found")

    try:
        content = resolver.render_record(sig.template, sig.fields(), fallback=True)
    except TemplateNotFound as e:
        raise http_error(e)
    filename = f"signature_{clean_name(sig.name)}_{datetime.now().strftime('%Y-%m-%d_%H-%M')}.html"
    return Response(
        content=content,
        media_type="text/html; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "must-revalidate",
            "X-Content-Type-Options": "nosniff",
        },
    )
