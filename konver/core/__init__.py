"""Core configuration, database and error definitions"""
