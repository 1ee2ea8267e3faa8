from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Optional


class ImapConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user: Optional[str] = None
    password: Optional[str] = None
    host: Optional[str] = None
    port: int = Field(default=993, ge=1, le=65535)
    tls: bool = True
    auth_timeout: Optional[int] = Field(default=None, alias='authTimeout', ge=0)


class ConnectionConfig(BaseModel):
    imap: Optional[ImapConfig] = None


class FetchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    config: Optional[ConnectionConfig] = None
    search_criteria: Optional[List[Any]] = Field(default=None, alias='searchCriteria')
    limit: Optional[int] = Field(default=None, ge=0)
    fetch_bodies: Optional[bool] = Field(default=None, alias='fetchBodies')
    mailbox: Optional[str] = None

    @property
    def should_fetch_bodies(self) -> bool:
        return self.fetch_bodies is not False


class MessageRecord(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    uid: int = 0
    message_id: Optional[str] = Field(default=None, alias='messageId')
    subject: str
    from_: str = Field(alias='from')
    date: str
    body_text: str = Field(default='', alias='bodyText')
    body_html: str = Field(default='', alias='bodyHtml')


class FetchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    messages: List[MessageRecord] = Field(default_factory=list)
    count: int = 0
    total_found: int = Field(default=0, alias='totalFound')
