from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from app.db.session import get_session
from app.services.document_store import DocumentStore, get_document_store


def get_documents() -> DocumentStore:
    """Document store client (separate database, no shared transaction)."""
    return get_document_store()


DbSession = Annotated[Session, Depends(get_session)]
Documents = Annotated[DocumentStore, Depends(get_documents)]
