"""
Direct Message Hooks
====================
Pipeline hooks for Facebook Page direct messages (Messenger).

Every non-echo message with text gets an answer: the trigger gate does not
apply. Duplicate deliveries are recognized by the platform message id kept
in the sender's session message log. There is no fallback channel for a
rejected send.
"""

from routes.webhook_base import InteractionConfig
from services import graph_client
from services.conversation_store import ConversationStore
from services.models import InboundInteraction


# ================================
# Hooks
# ================================
async def _claim_message(interaction: InboundInteraction) -> bool:
    return not await ConversationStore.is_duplicate_message(interaction)


def _send(interaction: InboundInteraction, text: str) -> str:
    return graph_client.get_client(interaction.platform).send_message(interaction.from_id, text)


# ================================
# Config
# ================================
facebook_dm_config = InteractionConfig(
    kind="direct_message",
    apply_trigger=False,
    claim=_claim_message,
    post_reply=_send,
)
