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

"""Push messaging contract backed by Firebase Cloud Messaging."""

import logging
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from firebase_admin import messaging

logger = logging.getLogger(__name__)


class MessagingError(Exception):
    """No device accepted the push message."""


class MessagingService(Protocol):
    def send_to_device(self, tokens: Sequence[str], payload: dict) -> str:
        """Sends {title, body, icon} to every token, returning a delivery id."""
        ...


class FirebaseMessagingService:
    def send_to_device(self, tokens: Sequence[str], payload: dict) -> str:
        message = messaging.MulticastMessage(
            tokens=list(tokens),
            notification=messaging.Notification(
                title=payload.get("title"), body=payload.get("body")
            ),
            webpush=messaging.WebpushConfig(
                notification=messaging.WebpushNotification(icon=payload.get("icon"))
            ),
        )
        response = messaging.send_each_for_multicast(message)
        if response.success_count == 0:
            raise MessagingError(f"push rejected by all {len(tokens)} tokens")
        if response.failure_count:
            logger.warning(
                "Push delivered to %d of %d tokens",
                response.success_count,
                len(tokens),
            )
        delivered = [r.message_id for r in response.responses if r.success]
        return delivered[0]


@dataclass
class InMemoryMessagingService:
    """Test double recording every push."""

    sent: list = field(default_factory=list)
    failing_tokens: set = field(default_factory=set)

    def send_to_device(self, tokens: Sequence[str], payload: dict) -> str:
        accepted = [t for t in tokens if t not in self.failing_tokens]
        if not accepted:
            raise MessagingError(f"push rejected by all {len(tokens)} tokens")
        self.sent.append((list(accepted), dict(payload)))
        return f"delivery-{len(self.sent)}"
