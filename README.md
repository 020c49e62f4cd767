# cfgcommit

`cfgcommit` applies the pending changes of a configuration session to the
active configuration. A session is a set of directories
(`cfgcommit.session.SessionDirs`):

- a changes-only layer;
- the active configuration;
- the merged view of the two;
- a template tree;
- a scratch directory.

Deleted entries in the changes layer are marked by `.wh.` whiteout files.

## How a commit runs

1. `load_session(dirs, parse_template)` walks the session directories and
   builds a tree of `ConfigNode` objects. Each node is marked with a
   `NodeOperation`: `NO_OP`, `SET`, `CREATE`, `DELETE` or `ACTIVE`.
   The optional `parse_template` callable turns a `node.def` file into a
   `Definition`. Without it, every node gets an empty definition.
2. `get_transactions(config, priority_mode)` splits the tree into
   transactions. Nodes with a priority below 1000 become transactions of
   their own, sorted by priority. The rest of the tree follows as the last
   transaction. Nodes whose extended priority starts with `PARENT` are
   placed next to their nearest prioritised ancestor.
3. For each transaction, `Committer.validate` runs the syntax and commit
   checks and collects change lines such as `+ /path/` and `- /path/`.
   `Committer.process_priority_node` then runs the actions in this order:
   begin, delete, create, update, end. Delete runs bottom-up, the others
   top-down. Subtrees whose template defines begin/end actions are run
   first, on their own.
4. `LiveConfigWriter` copies the result into the active configuration and
   empties the changes layer:
   - when every transaction succeeds, the whole merged view is copied;
   - when some fail, only the transactions that succeeded are copied, node
     by node.

   `SessionMount` unmounts the session union around these steps and mounts
   it again afterwards. By default it uses `unionfs-fuse` and `fusermount`.
   In test mode the writer only records the steps in
   `LiveConfigWriter.operations`.

Actions are run by an executor that you pass to `Committer`. It is called
as `executor(actions, node=..., action=..., at_value=..., script_path=..., env=...)`
and returns whether the commands succeeded. The `env` mapping holds
`NODE_DATA_PATH`, `COMMIT_SIBLING_POSITION` and `COMMIT_ACTION`.

## Installing

```
pip install .
```

Python 3.10 or later is required. The package has no dependencies outside
the standard library.

## Command line

```
cfgcommit -h
```

| Option | Effect |
| --- | --- |
| `-d` | debug logging, and the transactions are dumped to standard output |
| `-s` | dump the sorted transactions and exit |
| `-a` | print the actions in the order they would run, instead of running them |
| `-p` | turn off priority ordering; top-level subtrees become transactions in order |
| `-t` | test mode: no directories are changed and the union is not remounted |
| `-e` | print `<action>@_errloc_:[<path>]` for a failing node |
| `-c` | print `[START]`/`[END]` timestamps around each action |
| `-o` | do not keep transactions that succeeded when others fail |
| `-f` | keep checking after a syntax or commit check fails |
| `-b N` | before each transaction with priority N or higher, dump it and wait for a key |
| `-r` | do not run the hook scripts |
| `-x` | do not pass the space-separated script path to the executor |
| `-l` | remove the commit lock file first |
| `-C text` | argument passed to the hook scripts (default `commit`) |

The command takes its directories from these environment variables, with
defaults under `/opt/vyatta`:

- `VYATTA_CHANGES_ONLY_DIR`
- `VYATTA_ACTIVE_CONFIGURATION_DIR`
- `VYATTA_TEMP_CONFIG_DIR`
- `VYATTA_CONFIG_TEMPLATE`
- `VYATTA_CONFIG_TMP`

Before the commit, it runs the hooks in `/etc/pre_commit`. After the
commit, it runs the hooks in `/etc/commit`, with `COMMIT_STATUS` set to
`SUCCESS`, `PARTIAL` or `FAILURE`. Within each directory, hooks are
ordered by their leading number (`hook_order`). The changes of each
transaction are written to `/tmp/.changes`, which is removed at the end.

Exit status (`CommitStatus.exit_code`):

- 0 on success, or when there was nothing to commit;
- 2 on a partial commit;
- 1 on failure, or when the commit lock is held by another commit.

### What the command does not do

- It parses no template definition files. `main` calls `load_session`
  without a template parser, so every node has an empty `Definition` and
  no actions or checks run. To run actions, call `load_session` with your
  own `parse_template` and drive `Committer` yourself.
- Its executor runs each action command as written, through `/bin/sh -c`.
  It does not expand template expressions or variable references in
  commands.

## Library use

```python
from cfgcommit.paths import path_string_to_path_comps, process_script_path

path_string_to_path_comps("/interfaces//ethernet/eth0/")
# ['interfaces', 'ethernet', 'eth0']

process_script_path("interfaces/ethernet/eth0/")
# 'interfaces ethernet eth0 '
```

`cfgcommit.varref.VarRef` resolves variable references such as `../address/@`,
`@@` or `/system/host-name/@`. It works against a subclass of the abstract
`ConfigStore` that provides these methods:

- `parse_template`
- `child_nodes`
- `get_values`
- `get_value`
- `path_exists`

`VarRef.get_value()` returns the value and its `VtwType`, or `None`.
`VarRef.get_set_path()` returns the path of the single leaf the reference
refers to.

`dump_transactions(root, out)` writes a transaction tree in the same
format as the `-s` option.

## Tests

```
pip install .[test]
pytest
```