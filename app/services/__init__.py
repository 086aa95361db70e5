"""Business Logic Services.

This package contains the service modules that implement the query/call
lifecycle of the support desk.

Service Categories:
- Query: Donor query submission, assignment, resolution, transfer
- Call: Call requests, call sessions, expiry
- Messages: Chat and system events attached to a query
- Connection: WebSocket connection registry and typed event fan-out
- Core: Per-query locks, after-commit effects, repositories

External integrations:
- room_provider: Daily video rooms and meeting tokens
- email_service: Resend transactional email
- push_service: FCM device notifications
"""
