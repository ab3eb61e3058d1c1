"""Core services: embedding client, retriever, conversation context and query pipeline."""
