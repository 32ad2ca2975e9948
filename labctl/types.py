"""
Wire models exchanged with the lab47 account service.
"""

import datetime
from typing import List, Optional

import dateutil.parser
import pydantic as pdc


class AccountInfo(pdc.BaseModel):
    email: str
    namespace: str
    password: str
    new_password: Optional[str] = None


class TokenResponse(pdc.BaseModel):
    token: str


class RepoDetails(pdc.BaseModel):
    """
    A repository inside a namespace, as listed by the service.
    """

    name: str = ""
    created_at: Optional[str] = None
    total_tags: int = pdc.Field(default=0, alias="num_tags")

    @pdc.field_validator("created_at")
    @classmethod
    def _check_created_at(cls, value: Optional[str]) -> Optional[str]:
        if value:
            # ValueError here surfaces as a ValidationError
            dateutil.parser.isoparse(value)
        return value

    @property
    def created(self) -> datetime.datetime:
        """
        Return the creation time of the repository.
        If the service did not send one, fallback to datetime.min.
        """
        if self.created_at:
            return dateutil.parser.isoparse(self.created_at)

        return datetime.datetime.min


class NamespaceDetails(pdc.BaseModel):
    """
    A namespace with its credit balance. The balance is a decimal string and is
    never interpreted client side.
    """

    name: str
    credit: str = ""
    repos: List[RepoDetails] = pdc.Field(default_factory=list, alias="repositories")


class ListNamespaces(pdc.BaseModel):
    namespaces: List[NamespaceDetails] = pdc.Field(default_factory=list)


class MachineAccountCreateRequest(pdc.BaseModel):
    name: str
    description: str = ""
    write: bool = False


class MachineAccountCreateResponse(pdc.BaseModel):
    token: str


class CreditAddRequest(pdc.BaseModel):
    namespace: str
    credits: int
    local_port: Optional[int] = None


class CreditAddResponse(pdc.BaseModel):
    url: str


class RepoSettingsApply(pdc.BaseModel):
    public: Optional[bool] = None


class PersonalTokenRequest(pdc.BaseModel):
    pass


class PersonalTokenResponse(pdc.BaseModel):
    jwt: str