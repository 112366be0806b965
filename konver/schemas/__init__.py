"""
Pydantic schemas for Konver APIs
"""
