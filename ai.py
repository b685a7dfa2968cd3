"""
Generative-AI helpers backed by Gemini.

Every call is best effort: SDK or parsing failures are logged and a neutral
fallback is returned, so commerce operations never depend on these results.
"""
import json
import logging
import os
import re
import time
import uuid
from typing import List, Optional

from google import genai
from google.genai import types
from pydantic import BaseModel, Field

from schemas import Buyer, BuyerQuest, Product, Review

logger = logging.getLogger(__name__)

API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

if not API_KEY:
    logger.warning("GEMINI_API_KEY is not set. AI features will be disabled.")

_client = None


def set_client(client) -> None:
    """Swap the SDK client (None restores lazy creation from GEMINI_API_KEY)."""
    global _client
    _client = client


def get_client():
    global _client
    if _client is None and API_KEY:
        _client = genai.Client(api_key=API_KEY)
    return _client


class ChatMessage(BaseModel):
    sender: str = Field(..., description="user | bot")
    text: str


class NegotiationMessage(ChatMessage):
    offer: Optional[float] = None
    is_final: bool = False


class TicketTriage(BaseModel):
    category: str
    sentiment: str


class SearchSuggestions(BaseModel):
    suggestions: List[str] = Field(default_factory=list)
    did_you_mean: Optional[str] = None


def _catalog_summary(products: List[Product]) -> str:
    return json.dumps([
        {"id": p.id, "name": p.name, "category": p.category, "description": p.description[:100]}
        for p in products
    ])


def _generate(prompt, **config) -> str:
    client = get_client()
    if client is None:
        raise RuntimeError("AI client is not configured")
    response = client.models.generate_content(
        model=MODEL,
        contents=prompt,
        config=types.GenerateContentConfig(**config) if config else None,
    )
    return (response.text or "").strip()


def _generate_json(prompt, schema) -> dict:
    text = _generate(prompt, response_mime_type="application/json", response_schema=schema)
    return json.loads(text)


class _IdList(BaseModel):
    ids: List[int] = Field(default_factory=list)


def generate_product_description(keywords: str) -> str:
    if get_client() is None:
        return "AI service is currently unavailable. Please try again later."
    prompt = (
        "Generate a compelling and concise e-commerce product description for a tech-savvy "
        "audience. Be persuasive and highlight key benefits and specs. "
        f'The product is: "{keywords}". Do not use markdown or special formatting. Just return plain text.'
    )
    try:
        return _generate(prompt, temperature=0.7, max_output_tokens=100)
    except Exception:
        logger.exception("Error generating product description")
        return "Failed to generate AI description. Please check your keywords and try again."


def summarize_reviews(reviews: List[Review]) -> str:
    if get_client() is None or not reviews:
        return "No summary available."
    lines = "\n".join(f"- {r.comment} (Rating: {r.rating}/5)" for r in reviews)
    prompt = (
        "You are an e-commerce AI assistant. Summarize the following customer reviews for a "
        "product into a concise \"Pros & Cons\" list. Be objective and extract key themes.\n\n"
        f"Reviews:\n{lines}\n\nSummary:"
    )
    try:
        return _generate(prompt, max_output_tokens=150)
    except Exception:
        logger.exception("Error summarizing reviews")
        return "Could not generate summary."


def categorize_support_ticket(message: str) -> Optional[TicketTriage]:
    if get_client() is None:
        return None
    prompt = (
        "Analyze the following customer support message for an e-commerce store. "
        "Categorize it and determine its sentiment.\n"
        'Categories: "Shipping", "Payment", "Return", "Product Inquiry", "Account Issue", "Other"\n'
        'Sentiment: "Positive", "Neutral", "Negative"\n\n'
        f'Message: "{message}"\n\nReturn the result as a JSON object.'
    )
    try:
        return TicketTriage(**_generate_json(prompt, TicketTriage))
    except Exception:
        logger.exception("Error categorizing support ticket")
        return None


def search_suggestions(query: str, categories: List[str]) -> SearchSuggestions:
    if get_client() is None or not query:
        return SearchSuggestions()
    prompt = (
        "You are a helpful search assistant for a gadget e-commerce site.\n"
        "1. Check for a likely typo in a tech term. If you find one, suggest a correction.\n"
        "2. Suggest up to 3 relevant categories from the provided list.\n"
        "3. Suggest up to 2 related search terms.\n\n"
        f'User Query: "{query}"\nAvailable Categories: {", ".join(categories)}\n\n'
        'Return a JSON object with two keys: "did_you_mean" (string or null) and "suggestions" (an array of strings).'
    )
    try:
        return SearchSuggestions(**_generate_json(prompt, SearchSuggestions))
    except Exception:
        logger.exception("Error getting search suggestions")
        return SearchSuggestions()


ACCEPTED_RE = re.compile(r"Offer Accepted!.*?(\d+(?:\.\d{1,2})?)", re.S)


def negotiate_price(product: Product, history: List[ChatMessage]) -> NegotiationMessage:
    fallback = NegotiationMessage(
        sender="bot", text="Sorry, I'm having trouble with the connection. Let's try again."
    )
    client = get_client()
    if client is None or not history:
        return fallback
    instruction = (
        "You are an AI negotiation agent for Innovative Gadget. You are friendly, a bit witty, "
        "and a firm but fair negotiator.\n"
        f"- Product: {product.name}\n"
        f"- Listing Price: ${product.price}\n"
        f"- Your minimum acceptable price (secret): ${product.min_price}\n"
        "- Never go below your minimum price. If the offer is below it, counter with a higher but fair price.\n"
        '- When you reach an agreement, your final message must include the text "Offer Accepted!" and the final price.'
    )
    past = [
        types.Content(role="user" if m.sender == "user" else "model", parts=[types.Part(text=m.text)])
        for m in history[:-1]
    ]
    try:
        chat = client.chats.create(
            model=MODEL,
            config=types.GenerateContentConfig(system_instruction=instruction, temperature=0.8),
            history=past,
        )
        text = chat.send_message(history[-1].text).text or ""
    except Exception:
        logger.exception("Error in price negotiation")
        return fallback
    match = ACCEPTED_RE.search(text)
    if match:
        return NegotiationMessage(sender="bot", text=text, is_final=True, offer=float(match.group(1)))
    return NegotiationMessage(sender="bot", text=text)


def generate_vendor_story(store_name: str, bullet_points: str) -> str:
    if get_client() is None:
        return "AI service is unavailable."
    prompt = (
        "You are a brilliant storyteller for Innovative Gadget's \"Vendor Spotlight\".\n"
        "Write a short, engaging story (2-3 paragraphs) about an innovative gadget seller.\n"
        f"- Store Name: {store_name}\n- Key Points: {bullet_points}\n"
        "Highlight their passion for technology, their craft, and their connection to the tech community."
    )
    try:
        return _generate(prompt, temperature=0.7)
    except Exception:
        logger.exception("Error generating vendor story")
        return "AI service is unavailable."


def recommend_products(browsing_history: List[int], products: List[Product]) -> List[int]:
    if get_client() is None or not browsing_history:
        return []
    viewed = [
        {"id": p.id, "name": p.name, "category": p.category}
        for p in products if p.id in browsing_history
    ]
    rest = [p for p in products if p.id not in browsing_history]
    prompt = (
        "You are a personalization engine for an e-commerce site for gadgets. Based on the user's "
        "browsing history, recommend up to 10 other products from the catalog. Prefer similar "
        "categories and complementary items.\n\n"
        f"User Browsing History:\n{json.dumps(viewed)}\n\n"
        f"Full Product Catalog (for recommendations):\n{_catalog_summary(rest)}\n\n"
        'Return a JSON object with a single key "ids", an array of product IDs.'
    )
    known = {p.id for p in rest}
    try:
        ids = _IdList(**_generate_json(prompt, _IdList)).ids
    except Exception:
        logger.exception("Error getting recommendations")
        return []
    return [i for i in ids if i in known]


def find_similar_products(image: bytes, mime_type: str, products: List[Product]) -> List[int]:
    client = get_client()
    if client is None:
        return []
    prompt = (
        "You are a visual search engine for an e-commerce site specializing in gadgets. Based on "
        "the provided image, find the 5 most visually and stylistically similar products from the "
        'following JSON product catalog. Return a JSON object with a single key "ids".\n\n'
        f"Product Catalog:\n{_catalog_summary(products)}"
    )
    try:
        response = client.models.generate_content(
            model=MODEL,
            contents=[types.Part.from_bytes(data=image, mime_type=mime_type), prompt],
            config=types.GenerateContentConfig(response_mime_type="application/json", response_schema=_IdList),
        )
        return _IdList(**json.loads(response.text)).ids
    except Exception:
        logger.exception("Error finding similar products by image")
        return []


class _QuestDraft(BaseModel):
    title: str
    description: str
    points: int


class _QuestList(BaseModel):
    quests: List[_QuestDraft] = Field(default_factory=list)


def generate_quests(buyer: Buyer) -> List[BuyerQuest]:
    if get_client() is None:
        return []
    existing = ", ".join(q.title for q in buyer.quests) or "None"
    prompt = (
        "You are a gamification engine for Innovative Gadget, an e-commerce site for electronics. "
        "Generate 3 new, creative quests for a user to complete to earn loyalty points. "
        "Do not generate quests the user already has.\n\n"
        f"- Loyalty Tier: {buyer.loyalty.tier.value}\n"
        f"- Browsing History (Product IDs): {', '.join(str(i) for i in buyer.browsing_history[:5])}\n"
        f"- Existing Quests: {existing}\n\n"
        'Return a JSON object with a "quests" key: objects with "title", "description" and "points" (50-250).'
    )
    try:
        drafts = _QuestList(**_generate_json(prompt, _QuestList)).quests
    except Exception:
        logger.exception("Error generating quests")
        return []
    stamp = int(time.time() * 1000)
    return [
        BuyerQuest(id=f"quest-{stamp}-{uuid.uuid4().hex[:8]}", title=d.title,
                   description=d.description, points=max(0, d.points))
        for d in drafts
    ]


SHOPPING_ASSISTANT = (
    "You are a friendly, witty, and extremely helpful personal shopping assistant for Innovative "
    "Gadget, an e-commerce marketplace for cool gadgets. Help users discover products; when they ask "
    "for recommendations, use the provided Product Context to suggest specific product names. "
    "Payment methods: Credit/Debit Cards, PayPal, Google Pay and Apple Pay."
)


def chat_reply(history: List[ChatMessage], message: str, products: List[Product]) -> str:
    fallback = "Sorry, I'm having trouble connecting right now. Please try again in a moment."
    client = get_client()
    if client is None or not message.strip():
        return fallback
    context = json.dumps([{"id": p.id, "name": p.name, "category": p.category} for p in products[:10]])
    past = [
        types.Content(role="user" if m.sender == "user" else "model", parts=[types.Part(text=m.text)])
        for m in history
    ]
    try:
        chat = client.chats.create(
            model=MODEL,
            config=types.GenerateContentConfig(system_instruction=SHOPPING_ASSISTANT),
            history=past,
        )
        return chat.send_message(f"{message}\n\nProduct Context: {context}").text or fallback
    except Exception:
        logger.exception("Chatbot error")
        return fallback
