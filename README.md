# hydracrank

A permissionless, slot-scheduled crank. A *crank* is a program-derived
account that stores one scheduled instruction together with its schedule:
start slot, interval, run count, priority tip and compute-unit limit.
Anyone may fire a crank once its slot is reached. The firing transaction
pairs a `Trigger` instruction with the stored instruction directly after
it, and the crank pays the cranker a flat reward (`CRANKER_REWARD`,
10 000 lamports) plus the tip.

## What is in the package

- `hydracrank.consts` — constants and bounds (`MAX_ACCOUNTS`,
  `MAX_DATA_LEN`, `MAX_COMPUTE_UNIT_LIMIT`, `STALENESS_THRESHOLD_SLOTS`,
  …) and the `Ix` discriminators.
- `hydracrank.errors` — `ProgramError`, `ErrorKind` and the custom
  `HydraError` codes.
- `hydracrank.address` — base58 (`b58encode`, `b58decode`), `Pubkey`,
  `is_on_curve`, `create_program_address`, `find_program_address` and the
  program address `PROGRAM_ID`.
- `hydracrank.state` — the 120-byte `Crank` header (`Crank.from_bytes`,
  `Crank.to_bytes`), `crank_account_size`, `region_len_for` and
  `find_crank_pda`.
- `hydracrank.instruction` — builders `create`, `trigger`, `cancel`,
  `close`, the `CreateArgs` and `SchedMeta` types, and
  `scheduled_ix_from_crank`, which rebuilds the stored instruction from raw
  account bytes.
- `hydracrank.program` — the program logic (`create`, `trigger`, `cancel`,
  `close` and the `entrypoint.process_instruction` dispatcher) running
  against the in-memory account model in `hydracrank.program.runtime`.
- `hydracrank.cranker` — the off-chain runner: a thread-safe `CrankCache`,
  JSON-RPC client, transaction signing, WebSocket watchers, Prometheus-style
  metrics and the `hydra-cranker` command.

## Building instructions

```python
from hydracrank.address import Pubkey
from hydracrank.instruction import CreateArgs, SchedMeta, create, trigger
from hydracrank.state import find_crank_pda

payer = Pubkey(bytes([1] * 32))
target_program = Pubkey(bytes([2] * 32))
some_account = Pubkey(bytes([3] * 32))

seed = bytes([0x11] * 32)
crank, bump = find_crank_pda(seed)

args = CreateArgs(
    seed=seed,
    authority=bytes(32),          # all zeros: nobody can cancel
    start_slot=0,
    interval_slots=400,
    remaining=10,                 # 0 means run forever
    priority_tip=1_000,
    cu_limit=0,                   # 0: no SetComputeUnitLimit
    scheduled_program_id=target_program,
    scheduled_metas=[SchedMeta.writable(some_account)],
    scheduled_data=b"tick",
)
ix = create(payer, crank, args)
```

To fund a crank after creation, send a plain system transfer to its address.

## Reading a crank

```python
from hydracrank.instruction import scheduled_ix_from_crank
from hydracrank.state import Crank

header = Crank.from_bytes(account_data)
print(header.next_exec_slot, header.remaining, header.executed)

scheduled = scheduled_ix_from_crank(account_data)   # None if malformed
```

A stored `remaining` of `REMAINING_INFINITE` (2⁶⁴ − 1) means the crank
runs forever.

## Simulating the program

The program logic runs against in-memory accounts. Failures raise
`ProgramError`; for custom codes, `err.hydra_error` gives the `HydraError`.

```python
from hydracrank.instruction import INSTRUCTIONS_SYSVAR_ID, SYSTEM_PROGRAM_ID, Instruction
from hydracrank.program.entrypoint import process_instruction
from hydracrank.program.runtime import (
    Account, AccountView, ExecutionContext, serialize_instructions_sysvar,
)

payer_view = AccountView(payer, Account(lamports=1_000_000_000), is_signer=True, is_writable=True)
crank_view = AccountView(crank, Account(), is_writable=True)
system_view = AccountView(SYSTEM_PROGRAM_ID, Account(executable=True))
process_instruction(ix.program_id, [payer_view, crank_view, system_view], ix.data,
                    ExecutionContext(slot=0))

crank_view.account.lamports += 1_000_000          # top up for rewards
cranker = AccountView(Pubkey(bytes([4] * 32)), Account(), is_signer=True, is_writable=True)
trig = trigger(crank, cranker.address)
scheduled = scheduled_ix_from_crank(crank_view.data)
sysvar = AccountView(INSTRUCTIONS_SYSVAR_ID,
                     Account(data=serialize_instructions_sysvar([trig, scheduled], 0)))
process_instruction(trig.program_id, [crank_view, cranker, sysvar], trig.data,
                    ExecutionContext(slot=0))
```

`ExecutionContext` carries the clock slot, stack height, `Rent` and the
program address. `Close` is accepted once a crank is exhausted, cannot pay
its next reward above the rent minimum, or is more than
`STALENESS_THRESHOLD_SLOTS` behind; the reporter receives the reward as a
bounty and the rest goes to the recipient (who must be the authority, if
one is set).

## Running the cranker

```
hydra-cranker --keypair cranker.json --rpc-url https://api.devnet.solana.com
```

On start it loads every crank with `getProgramAccounts`, keeps the cache
fresh through `programSubscribe`, and on every `slotSubscribe` tick closes
the closable cranks and triggers the eligible ones. Failed triggers back
off (1, 1, 2, 4, … slots) and a crank is parked after 10 consecutive
failures at the same scheduled slot; a successful submit is followed by a
3-slot cooldown, and failed closes are retried after 10 slots.

Options:

- `--keypair` — a path to a JSON keypair file, a JSON array of 64 bytes or
  a base58-encoded keypair (required).
- `--rpc-url` — JSON-RPC endpoint; defaults to `http://127.0.0.1:8899`.
- `--ws-url` — WebSocket endpoint; defaults to the RPC URL with `http`
  turned into `ws` and `https` into `wss`.
- `--prometheus-port PORT` — serves metrics at `/metrics` on that port.
- `--priority-fee-micro-lamports N` — compute-unit price attached to every
  trigger and close transaction (0, the default, omits it).
- `--trigger-skip-preflight` — sends triggers without simulation and polls
  for them to land, so on-chain failures count as failures.

Each option can also be set through an environment variable:
`HYDRA_CRANKER_RPC_URL`, `HYDRA_CRANKER_WS_URL`, `HYDRA_CRANKER_KEYPAIR`,
`HYDRA_CRANKER_PROMETHEUS_PORT`,
`HYDRA_CRANKER_PRIORITY_FEE_MICRO_LAMPORTS`,
`HYDRA_CRANKER_TRIGGER_SKIP_PREFLIGHT`.

Press Ctrl-C once to stop gracefully, twice to exit immediately.

## What it does not do

- The program logic is for simulation and testing only; nothing here builds
  or deploys an on-chain program, and the in-memory runtime is not a full
  validator.
- There are no helpers for invoking the program from another program.
- The cranker takes account and slot updates only from JSON-RPC and
  WebSocket subscriptions; it has no gRPC streaming source.

## Tests

```
pip install -e .[test]
pytest
```