"""Prompt templates for all LLM tasks."""

CLASSIFY_ARTICLE = """\
You are a market analyst specialised in Artificial Intelligence and Computer Vision.
Analyse the news article below and reply with ONLY a JSON object, no markdown, \
no extra text, in EXACTLY this format:

{{
    "relevant": true or false,
    "reason": "why the article is or is not relevant",
    "category": "PRODUCT|PARTNERSHIP|STRATEGY",
    "suggested_action": "recommended action for our team",
    "confidence": 0.0-1.0,
    "summary": "executive summary in 2-3 lines",
    "keywords": "extracted keywords, comma separated"
}}

RELEVANCE CRITERIA:
- Related to AI, Computer Vision, Machine Learning or Deep Learning
- New products, technologies or innovations
- Partnership or collaboration opportunities
- Strategic market moves
- Competitors or companies in the sector

CATEGORIES:
- PRODUCT: new products, technologies, innovations
- PARTNERSHIP: partnership opportunities, collaborations
- STRATEGY: strategic moves, trends, market shifts

TITLE: {title}
DESCRIPTION: {description}
SOURCE: {source}
URL: {url}
"""
