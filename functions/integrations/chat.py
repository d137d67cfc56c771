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

"""Chat service contract with a Slack client and an in-memory double."""

from dataclasses import dataclass, field
from typing import Optional, Protocol

import requests

REQUEST_TIMEOUT = 10  # seconds


class ChatServiceError(Exception):
    """The chat service rejected a message."""


class ChatService(Protocol):
    def post_message(self, channel: str, text: str) -> str:
        ...


class SlackChatService:
    def __init__(
        self,
        bot_token: str,
        api_url: str = "https://slack.com/api",
        timeout: float = REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.bot_token = bot_token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def post_message(self, channel: str, text: str) -> str:
        response = self._session.post(
            f"{self.api_url}/chat.postMessage",
            headers={"Authorization": f"Bearer {self.bot_token}"},
            json={"channel": channel, "text": text, "mrkdwn": True},
            timeout=self.timeout,
        )
        response.raise_for_status()
        body = response.json()
        # Slack reports API errors with a 200 and ok=false.
        if not body.get("ok"):
            raise ChatServiceError(f"chat.postMessage failed: {body.get('error')}")
        return body["ts"]


@dataclass
class InMemoryChatService:
    messages: list = field(default_factory=list)

    def post_message(self, channel: str, text: str) -> str:
        self.messages.append((channel, text))
        return f"{len(self.messages)}.000100"
