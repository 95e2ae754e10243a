"""Clinic application for the CareHub backend.

Holds the order and payment models, the services behind them, the API
views and route registrations, and the payment expiry worker.
"""
