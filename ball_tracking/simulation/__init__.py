"""Synthetic ball scenarios for exercising the ball filter."""
