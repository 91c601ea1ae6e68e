"""
API Gateway Service package for the Airflow Access layer.

The gateway fronts client requests to the Airflow REST API, enforcing:
- Authentication: signed bearer tokens issued at login
- Authorization: an ordered method/path/role rule table
- Outbound calls: one templated executor with downstream credentials
- Action auditing: best-effort records of mutating calls

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.auth: Roles, principals, tokens, passwords and the authentication gate.
- app.rules: Authorization rule model and matrix.
- app.adapters: Orchestrator client, credential store and audit sink.
- app.domain: Per-resource services and request-scoped helpers.
"""
