# Prompt templates for the social reply agent
# Templates with {fields} are filled with .format(); the active
# configuration's own instructions use ${placeholders} and are
# substituted separately by the response generator.

# ================================
# Default instructions (no active configuration)
# ================================
DEFAULT_SYSTEM_INSTRUCTIONS = "You are an AI assistant. Respond helpfully and professionally."

PERSONAL_CONTEXT = "Business/Person: {business_name}\nDetails: {details}"

PLACEHOLDER_DEFAULTS = {
    "postContent": "No post content available",
    "personalContext": "No business context available",
    "searchResults": "No search results available",
    "fileResults": "No file results available",
}

# ================================
# User-visible fallbacks
# ================================
GENERATION_APOLOGY = {
    "comment": "Sorry, there was an error processing your comment.",
    "dm": "Sorry, there was an error processing your message.",
}

MERGE_FALLBACK_REPLY = (
    "Thanks for your message! Could you clarify what you need help with "
    "(product info, pricing, order status, or support)?"
)

# ================================
# Contextual instructions (built by the context resolver)
# ================================
COMMENT_CONTEXT_HEADER = (
    "You are responding to a {platform} comment on a post.\n"
    "IMPORTANT CONTEXT:"
)
COMMENT_CONTEXT_POST = "- The post content is: \"{post_content}\""
COMMENT_CONTEXT_MEDIA = "- Media analysis of the post: {media_analysis}"
COMMENT_CONTEXT_PARENT = "- This is a reply to a comment by {author}: \"{parent_text}\""
COMMENT_CONTEXT_THREAD = "- Other messages in this thread:\n{thread_messages}"
COMMENT_CONTEXT_FOOTER = (
    "- The user's comment is: \"{comment_text}\"\n"
    "Respond helpfully and professionally, taking the post and thread into account. "
    "Keep the reply short enough for a comment."
)

DM_CONTEXT = (
    "You are responding to a direct message on {platform}. "
    "Keep the reply conversational and concise."
)

# ================================
# Merge generation (multiple intents)
# ================================
MERGE_INSTRUCTIONS = """The message contains several distinct requests. Detected intents: {intents}.
Address every one of them in a single coherent reply, one short line per intent, each line starting with "- ".
Skip an intent only if it is clearly irrelevant to the message."""

# ================================
# Prompt augmentation blocks
# ================================
RELATED_POST_BLOCK = """Relevant Post Content Found:
{content}
(Use this content to answer questions about the post.)"""

MEMORY_BLOCK = "User Conversation History (most recent first):\n{history}"

WEB_SEARCH_BLOCK = """Use the following current web search results to give up-to-date information. Cite sources when helpful.
Web Search Results:
{results}"""

FILE_SEARCH_BLOCK = """Use the following content from the business's reference files where relevant.
File Search Results:
{results}"""

CLOSING_INSTRUCTIONS = (
    "If you don't know something, say so rather than guessing. "
    "IMPORTANT: This is a unique conversation (ID: {conversation_id}). "
    "Do not reference previous conversations unless they appear in the history above."
)

USER_MESSAGE = "[Conversation ID: {conversation_id}] {message}"

# ================================
# Classification prompts (classifier model)
# ================================
INTENT_CLASSIFICATION = """Classify the intents of a {channel} message sent to a business.
Possible intents: {intents}, other.
Use the intent names exactly as listed.
A message may have several intents.
Return ONLY valid JSON: {{"intents": ["intent", ...], "confidence": {{"intent": 0.0-1.0}}}}"""

WEB_SEARCH_NEED = """Decide whether answering the user's message requires current information from the web
(news, prices, weather, recent events, anything that changes over time).
Answer with exactly YES or NO."""

FILE_SEARCH_NEED = """The business has uploaded reference documents (catalogues, FAQs, policies).
Decide whether answering the user's message would benefit from looking them up.
Answer with exactly YES or NO."""
