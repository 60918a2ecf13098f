"""
Post Comment Hooks
==================
Pipeline hooks for Facebook Page feed comments and Instagram media comments.

Flow: claim (insert-if-absent on the comment id) -> ... -> threaded reply,
falling back to a top-level comment when the platform rejects the reply:

  Facebook:  POST /{comment}/comments  ->  POST /{post}/comments
  Instagram: POST /{comment}/replies   ->  POST /{media}/comments
"""

from routes.webhook_base import InteractionConfig
from services import graph_client
from services.conversation_store import ConversationStore
from services.models import InboundInteraction


# ================================
# Hooks
# ================================
def _reply(interaction: InboundInteraction, text: str) -> str:
    return graph_client.get_client(interaction.platform).reply_to_comment(interaction.id, text)


def _reply_fallback(interaction: InboundInteraction, text: str) -> str:
    return graph_client.get_client(interaction.platform).reply_fallback(
        interaction.id, interaction.post_id, text
    )


def _mention_commenter(interaction: InboundInteraction, text: str) -> str:
    """Facebook tags the commenter so the reply notifies them."""
    if not interaction.from_id:
        return text
    return f"@[{interaction.from_id}] {text}"


# ================================
# Configs
# ================================
facebook_comment_config = InteractionConfig(
    kind="post_comment",
    apply_trigger=True,
    claim=ConversationStore.record_inbound_comment,
    post_reply=_reply,
    post_fallback=_reply_fallback,
    format_reply=_mention_commenter,
)

instagram_comment_config = InteractionConfig(
    kind="post_comment",
    apply_trigger=True,
    claim=ConversationStore.record_inbound_comment,
    post_reply=_reply,
    post_fallback=_reply_fallback,
)
