"""Platform fee arithmetic for destination charges.

The platform keeps `fee` and Stripe transfers `amount - fee` to the club's
connected account. Amounts are integer minor units (cents).
"""

from flask import current_app


def calculate_platform_fee(amount, basis_points):
    """Fee in cents for `amount` at `basis_points` (1 bp = 0.01%).

    Rounds half up: 10000 @ 300 bp -> 300, 1050 @ 300 bp -> 32.
    """
    if amount < 0 or basis_points < 0:
        raise ValueError("amount and basis_points must be non-negative")
    return (amount * basis_points + 5000) // 10000


def fee_basis_points_for(club):
    """The club's fee override, else the platform default."""
    if club is not None and club.platform_fee_bps is not None:
        return club.platform_fee_bps
    return current_app.config["PLATFORM_FEE_BASIS_POINTS"]
