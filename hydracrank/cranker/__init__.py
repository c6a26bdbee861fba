"""Off-chain runner that caches cranks, fires eligible ones and closes dead ones."""