"""Firebase Storage for generated documents."""
