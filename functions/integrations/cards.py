# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

"""Card service contract with a Trello client and an in-memory double."""

from dataclasses import dataclass, field
from typing import Optional, Protocol

import requests

REQUEST_TIMEOUT = 10  # seconds


class CardServiceError(Exception):
    """The card service rejected a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CardDeletedError(CardServiceError):
    """The referenced card no longer exists on the board (404)."""

    def __init__(self, card_id: str):
        super().__init__(f"card {card_id} not found", status_code=404)
        self.card_id = card_id


class CardService(Protocol):
    def create_card(self, list_id: str, payload: dict) -> str:
        ...

    def move_card(self, card_id: str, list_id: str, due_complete: bool = False) -> None:
        ...

    def comment_card(self, card_id: str, text: str) -> None:
        ...

    def set_due(self, card_id: str, due: Optional[str]) -> None:
        ...

    def add_attachment(self, card_id: str, url: str) -> str:
        ...

    def archive_card(self, card_id: str, archived: bool = True) -> None:
        ...

    def card_url(self, card_id: str) -> str:
        ...


class TrelloCardService:
    """Thin client over the Trello REST API."""

    def __init__(
        self,
        api_key: str,
        api_token: str,
        api_url: str = "https://api.trello.com/1",
        timeout: float = REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.api_token = api_token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _request(self, method: str, path: str, card_id: str = "", **params) -> dict:
        response = self._session.request(
            method,
            f"{self.api_url}{path}",
            params={"key": self.api_key, "token": self.api_token, **params},
            timeout=self.timeout,
        )
        if response.status_code == 404:
            raise CardDeletedError(card_id)
        if not response.ok:
            raise CardServiceError(
                f"{method} {path} failed: {response.status_code} {response.text}",
                status_code=response.status_code,
            )
        return response.json() if response.content else {}

    def create_card(self, list_id: str, payload: dict) -> str:
        card = self._request("POST", "/cards", idList=list_id, **payload)
        return card["id"]

    def move_card(self, card_id: str, list_id: str, due_complete: bool = False) -> None:
        params = {"idList": list_id}
        if due_complete:
            params["dueComplete"] = "true"
        self._request("PUT", f"/cards/{card_id}", card_id=card_id, **params)

    def comment_card(self, card_id: str, text: str) -> None:
        self._request(
            "POST", f"/cards/{card_id}/actions/comments", card_id=card_id, text=text
        )

    def archive_card(self, card_id: str, archived: bool = True) -> None:
        self._request(
            "PUT",
            f"/cards/{card_id}",
            card_id=card_id,
            closed="true" if archived else "false",
        )

    def set_due(self, card_id: str, due: Optional[str]) -> None:
        # Clearing the due date also drops the completed label.
        self._request(
            "PUT",
            f"/cards/{card_id}",
            card_id=card_id,
            due=due if due else "null",
            dueComplete="false",
        )

    def add_attachment(self, card_id: str, url: str) -> str:
        attachment = self._request(
            "POST", f"/cards/{card_id}/attachments", card_id=card_id, url=url
        )
        if not attachment.get("id"):
            raise CardServiceError(f"card {card_id}: attachment response has no id")
        return attachment["id"]

    def card_url(self, card_id: str) -> str:
        return f"https://trello.com/c/{card_id}"


@dataclass
class InMemoryCardService:
    """Test double keeping cards by id; ids in `deleted` answer like a 404."""

    cards: dict = field(default_factory=dict)
    comments: list = field(default_factory=list)
    deleted: set = field(default_factory=set)

    def _card(self, card_id: str) -> dict:
        if card_id in self.deleted or card_id not in self.cards:
            raise CardDeletedError(card_id)
        return self.cards[card_id]

    def create_card(self, list_id: str, payload: dict) -> str:
        card_id = f"card-{len(self.cards) + 1}"
        self.cards[card_id] = {"idList": list_id, **payload}
        return card_id

    def move_card(self, card_id: str, list_id: str, due_complete: bool = False) -> None:
        card = self._card(card_id)
        card["idList"] = list_id
        card["dueComplete"] = due_complete

    def comment_card(self, card_id: str, text: str) -> None:
        self._card(card_id)
        self.comments.append((card_id, text))

    def archive_card(self, card_id: str, archived: bool = True) -> None:
        self._card(card_id)["closed"] = archived

    def set_due(self, card_id: str, due: Optional[str]) -> None:
        card = self._card(card_id)
        card["due"] = due
        card["dueComplete"] = False

    def add_attachment(self, card_id: str, url: str) -> str:
        attachments = self._card(card_id).setdefault("attachments", [])
        attachments.append(url)
        return f"{card_id}-att-{len(attachments)}"

    def card_url(self, card_id: str) -> str:
        return f"https://trello.test/c/{card_id}"
