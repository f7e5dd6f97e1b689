# densefuse

Building blocks for dense RGB-D reconstruction, written on top of NumPy and SciPy.

## What is in it

- `densefuse.calibration`: depth-camera intrinsics.
  - `Intrinsics` holds `fx`, `fy`, `cx`, `cy`, `width` and `height`. Its `matrix()` method gives the 3×3 camera matrix.
  - `default_intrinsics()` returns the stock parameters: focal length 528.014…, principal point (320, 267), image size 640×480.
  - `parse_calibration_line` reads a line of the form `fx fy cx cy` or `fx fy cx cy w h`. Any other count of numbers raises `ValueError`.
  - `load_calibration(path)` reads a calibration file. A `.xml` or `.yml` file must hold a 3×3 `depth_intrinsics` matrix. Any other file holds a single line of numbers. An empty path gives the defaults.
- `densefuse.cloud`: `PointCloud` holds positions, normals and RGB colours as NumPy arrays.
  - `extend` appends the points of another cloud.
  - `resize` truncates the cloud, or pads it with zeroed points.
  - `transformed` returns a copy whose positions are moved by a 4×4 transform.
- `densefuse.depth_camera`: `DepthCamera` works with depth images in millimetres and produces points in metres.
  - `compute_vertex_map` returns a `(rows, cols, 3)` float32 vertex map. Pixels without depth get `INVALID_VERTEX` (100000) in every component.
  - `to_point_cloud` back-projects the valid pixels closer than `max_dist` metres. The default is 4 m.
  - `project_inlier_matches` lifts matched pixel pairs from two depth images into 3D. It drops any pair where either depth is zero.
- `densefuse.cholesky`: `CholeskySolver` solves the normal equations `JᵀJ δ = Jᵀr` of a sparse Jacobian.
  - It computes a fill-reducing ordering on the first run and keeps it until `free_factor()` is called.
- `densefuse.topology`: building a deformation graph.
  - Sampling: radius sampling of nodes (`radius_sample`, `radius_sample_temporal`).
  - Connecting nodes: sequentially (`connect_graph_seq`), by nearest neighbours (`connect_graph_nn`), or by nearest neighbours within a one-minute time window (`connect_graph_nn_temporal`).
  - Weighting vertices: `weight_vertex_seq`, `weight_vertices_nn` and `weight_vertices_nn_temporal`. All of them return lists of `VertexWeight`.
- `densefuse.graph`: `DeformationGraph` embeds a graph of nodes in a cloud of vertices. Each node carries a rotation and a translation.
  - It can be built three ways:
    - from camera poses: `initialise_graph_poses`, which is later extended by `append_graph_poses` and `append_vertices`;
    - from the vertices themselves: `initialise_graph_nn`;
    - from the vertices themselves within a time window: `initialise_graph_poses_nn`.
  - `add_constraint`, `remove_constraint` and `clear_constraints` set the targets that vertices should reach.
  - `compute_vertex_position` returns a vertex's deformed position and normal.
  - `reset_graph` restores identity transforms.
- `densefuse.optimise`: Gauss–Newton optimisation of the node transforms.
  - `optimise_graph(graph, solver)` runs up to ten steps. It returns the final squared residual. It returns `None` when there are no constraints, or when the mean constraint error is below 0.1.
  - `apply_graph_to_vertices` deforms the cloud's positions and normals in place.
  - The residual and Jacobian pieces are available on their own:
    - `rotation_residual`, `regularisation_residual`, `constraint_residual`;
    - `sparse_residual`, `sparse_jacobian`, `apply_delta`.

## Installation

```
pip install .
```

To install the test dependencies as well:

```
pip install .[test]
```

## Examples

Back-projecting a depth image:

```python
import numpy as np
from densefuse.calibration import default_intrinsics
from densefuse.depth_camera import DepthCamera

camera = DepthCamera(default_intrinsics(), 640, 480)

depth = np.zeros((480, 640), dtype=np.uint16)
depth[200:280, 300:340] = 1500          # 1.5 m patch

cloud = camera.to_point_cloud(depth, 4.0)
print(len(cloud), "points")
```

Deforming a point cloud with a graph:

```python
import numpy as np
from densefuse.cholesky import CholeskySolver
from densefuse.cloud import PointCloud
from densefuse.graph import DeformationGraph
from densefuse.optimise import apply_graph_to_vertices, optimise_graph

rng = np.random.default_rng(0)
vertices = PointCloud(rng.uniform(0.0, 3.0, size=(500, 3)))

graph = DeformationGraph(4)
graph.initialise_graph_nn(vertices, 0.5)
graph.add_constraint(0, vertices.positions[0] + np.array([0.0, 0.0, 0.3]))
optimise_graph(graph, CholeskySolver())
apply_graph_to_vertices(graph)          # vertices is changed in place
```

`optimise_graph` logs its progress through the standard `logging` module, under the logger `densefuse.optimise`.

## What it does not do

densefuse is a library only. It has no command-line program, no live camera capture, and no viewer. Beyond what `DepthCamera` and `PointCloud` offer, it does not process clouds:

- no voxel-grid downsampling;
- no weight culling;
- no normal estimation.

It does not build surface meshes. It does not write PCD, PLY or any other point-cloud or mesh file format. Clouds are plain NumPy arrays, to be saved with whatever tool suits.

## Running the tests

```
pytest
```