# gpumanager

Models the GPUs of a machine as a topology tree and picks cards for
containers that ask for GPU cores and memory.

Cards are the leaves of the tree. Above them sit the links that join
them (same PCIe switch, multiple switches, host bridge, CPU socket), so
that cards which talk to each other cheaply share a close ancestor.
Every node keeps a bit mask of the free cards below it, and every card
keeps how many cores (100 per card) and how many bytes of memory can
still be handed out.

## Building a tree

`gpumanager.tree.NvidiaTree.init` builds a tree from a topology matrix
in the layout printed by `nvidia-smi topo -m`. Cells are read by
`gpumanager.topology.parse_topology_level`: `PIX`, `PXB`, `PHB` and
`SOC` become levels of `TopologyLevel`. Input that does not form a
tree raises `ValueError`.

```python
from gpumanager.tree import new_nvidia_tree

matrix = """\
    GPU0    GPU1    GPU2    GPU3    GPU4    GPU5
GPU0      X      PIX     PHB     PHB     SOC     SOC
GPU1     PIX      X      PHB     PHB     SOC     SOC
GPU2     PHB     PHB      X      PIX     SOC     SOC
GPU3     PHB     PHB     PIX      X      SOC     SOC
GPU4     SOC     SOC     SOC     SOC      X      PIX
GPU5     SOC     SOC     SOC     SOC     PIX      X
"""

tree = new_nvidia_tree(None)
tree.init(matrix)

tree.total()                      # 6 cards
tree.available()                  # 6 wholly free cards
tree.query("/dev/nvidia0")        # the leaf for a device file, or None
```

## Choosing cards

`gpumanager.algorithm` holds three strategies. Each takes the tree and
answers `evaluate(cores, memory)` with a list of leaves, or an empty
list when the request cannot be met.

- `FragmentMode` takes whole cards from the most fragmented part of the
  tree that still fits, which keeps well-connected groups free.
- `LinkMode` takes whole cards whose links to each other are the
  cheapest.
- `ShareMode` takes the one card with the least spare cores and memory
  that still fits the request.

```python
from gpumanager.algorithm import FragmentMode, LinkMode

[n.minor_name() for n in FragmentMode(tree).evaluate(200, 0)]
# ['/dev/nvidia4', '/dev/nvidia5']

[n.minor_name() for n in LinkMode(tree).evaluate(300, 0)]
# ['/dev/nvidia0', '/dev/nvidia1', '/dev/nvidia2']
```

## Occupying and freeing cards

A tree built from text starts with no allocatable cores or memory on
its cards; set them on each leaf's `allocatable_meta` (and
`meta.total_memory`) before sharing cards out.

`mark_occupied(node, cores, memory)` takes cores and memory from a card
and marks it busy in its ancestors; 100 cores or more takes the whole
card. `mark_free(node, cores, memory)` gives them back, capped at a
full card; once all 100 cores are free again the card counts as
available.

```python
for leaf in tree.leaves():
    leaf.allocatable_meta.cores = 100
    leaf.allocatable_meta.memory = 1024
    leaf.meta.total_memory = 1024

card = tree.leaves()[0]
tree.mark_occupied(card, 50, 0)
tree.available()                  # 5
tree.mark_free(card, 50, 0)
tree.available()                  # 6
```

`update()` recomputes each inner node's processes and memory from its
children.

Nodes can be ordered with `gpumanager.topology.sort_nodes(nodes, keys)`
using the keys `by_type`, `by_available`, `by_id`, `by_memory`,
`by_pids`, `by_allocatable_cores` and `by_allocatable_memory`.

## Showing the tree

```python
from gpumanager.graph import print_graph

print(print_graph(tree))
```

prints the root and its free card count, then each level indented under
its parent with the processes and memory in use and what can still be
allocated. `format_node(node)` gives the line for a single node.

## Drivers

Tree types are looked up by driver name in `gpumanager.registry`.
`register(name, factory)` adds a factory that takes a `Config` (or
`None`) and returns a `GPUTree`; a name already registered is kept.
`new_func_for_name(name)` finds it again, or gives `None` for an
unknown name. `"nvidia"` and `"dummy"` are built in;
`gpumanager.dummy.DummyTree` builds no topology and only remembers the
text it was given.

## Configuration

`gpumanager.options.parse_options(argv)` reads manager command-line
arguments (`--driver`, `--extra-config`, `--volume-config`,
`--docker-endpoint`, `--query-port`, `--query-addr`, `--kubeconfig`,
`--standalone`, `--sample-period`, `--node-labels`,
`--hostname-override`, `--virtual-manager-path`,
`--device-plugin-path`, `--checkpoint-path`, `--share-mode`,
`--allocation-check-period`, `--incluster-mode`; underscores in flag
names are read as dashes) into an `Options` object.
`build_config(options)` turns that into a `gpumanager.config.Config`.
`parse_node_labels("a=1,b=2")` gives `{"a": "1", "b": "2"}` and skips
malformed items. `ExtraConfig.from_dict` reads an extra-config entry
with an optional `devices` list.

## What it does not do

The package is a library. It has no command to run, no server, and no
registration with a kubelet. It does not read real GPUs: trees are
built only from a topology matrix given as text, and card usage comes
from what the caller records.