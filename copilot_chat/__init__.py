"""Copilot Chat — response generation service for chat sessions."""
