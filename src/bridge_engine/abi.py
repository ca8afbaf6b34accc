"""Contract ABIs used by the transfer engine."""

ERC20_abi = [
    {
        "type": "function",
        "name": "decimals",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "allowance",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "approve",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
]

# Destination chain ids and recipients are strings: destinations include
# non-EVM networks with string chain ids and bech32 addresses.
Bridge_abi = [
    {
        "type": "function",
        "name": "depositNative",
        "stateMutability": "payable",
        "inputs": [{"name": "destinationChain", "type": "string"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "depositToken",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "token", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "destinationChain", "type": "string"},
            {"name": "recipient", "type": "string"},
        ],
        "outputs": [],
    },
]
