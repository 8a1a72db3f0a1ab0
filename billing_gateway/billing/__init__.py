"""Subscription plans, effective-plan resolution, and webhook event application."""
