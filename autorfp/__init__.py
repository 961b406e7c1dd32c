"""AutoRFP — procurement request pipeline."""
