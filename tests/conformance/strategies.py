"""Hypothesis strategies for randomized market activity."""

from hypothesis import strategies as st

from lending import Asset
from tests.helpers import USERS


users = st.sampled_from(USERS)
assets = st.sampled_from(list(Asset))

amount_steps = st.tuples(
    st.sampled_from(["deposit", "withdraw", "borrow", "repay"]),
    users,
    assets,
    st.integers(min_value=1, max_value=2_000),
)

liquidation_steps = st.tuples(st.just("liquidate"), users, users, assets, assets)

price_steps = st.tuples(st.just("price"), st.integers(min_value=10, max_value=200))

wait_steps = st.tuples(st.just("wait"), st.integers(min_value=1, max_value=90))

steps = st.one_of(amount_steps, amount_steps, liquidation_steps, price_steps, wait_steps)

step_lists = st.lists(steps, min_size=1, max_size=30)
