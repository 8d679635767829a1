"""
Photo Studio core: API key resolution, error normalization and the Gemini
request/response layer behind every photo operation.
"""
