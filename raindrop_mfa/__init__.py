"""
raindrop-mfa - Hydro Raindrop multi-factor authentication gate.

Possession-based second factor for an existing login flow.

After primary credentials succeed, users prove possession of their registered
HydroID by confirming a one-time challenge in the Hydro mobile app. This
package provides the challenge/session state machine, the signed MFA session
cookie, failed-attempt lockout, and a FastAPI surface that runs the gate on
every request.
"""

__version__ = "0.1.0"
__author__ = "raindrop-mfa Team"
