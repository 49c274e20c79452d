"""Protocol constants shared across the engine."""

# The system program id doubles as the native asset id
NATIVE_ASSET = "11111111111111111111111111111111"

LAMPORTS_PER_SOL = 1_000_000_000

BPS_DENOMINATOR = 10_000

VERSION = "3.2.0"
