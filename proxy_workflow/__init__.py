"""
Proxy Workflow - Source Package

The proxy action engine of a group-finance record keeper. A member
(the delegate) asks to act on behalf of another member; the request
collects approvals until quorum, and is then executed, rejected,
cancelled or left to expire.

DESIGN PRINCIPLES:
1. Members propose -> Quorum approves -> Engine executes
2. Fail early, fail visibly
3. Every transition leaves an audit entry
4. No write lands on a record that changed since it was read
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Proxy Workflow Team"
