from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..database import get_db
from ..dependencies import CallerIdentity, get_current_caller

router = APIRouter(prefix="/conversations", tags=["Conversations"])


@router.get("/eligibility", response_model=schemas.ConversationEligibility)
def conversation_eligibility(
        owner_id: str,
        player_id: str,
        caller: Annotated[CallerIdentity, Depends(get_current_caller)],
        db: Session = Depends(get_db),
):
    """
    Tells the chat service whether these two parties may open a conversation.
    """
    if caller.user_id not in (owner_id, player_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only check conversations you are part of"
        )
    allowed = crud.has_confirmed_booking(db, owner_id=owner_id, player_id=player_id)
    return schemas.ConversationEligibility(owner_id=owner_id, player_id=player_id, allowed=allowed)
