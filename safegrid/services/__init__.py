"""
Services layer - business logic for the risk grid, safety scores and alerting.

DESIGN PRINCIPLE:
- Services contain business logic, NOT routes
- Firestore access is synchronous; async callers use run_in_executor
- Real-time delivery is best effort except new distress alerts, which
  fall back to the FallbackStore
"""
