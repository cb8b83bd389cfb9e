"""StarQuest ledger: stars, redemptions, credit and settlement for families."""
