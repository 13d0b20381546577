"""
Text Generation Layer -- unified async interface to hosted and local models.

Supports OpenAI, Anthropic, Google, Ollama, Groq, OpenRouter, Mistral and
Together.
"""
